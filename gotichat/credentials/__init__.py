from gotichat.credentials.session_blob import SessionBlob, SessionBlobStore
from gotichat.credentials.store import CredentialStore

__all__ = ["CredentialStore", "SessionBlob", "SessionBlobStore"]
