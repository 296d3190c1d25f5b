from gotichat.session.controller import MessageCollection, SessionController, SessionUpdate

__all__ = ["MessageCollection", "SessionController", "SessionUpdate"]
