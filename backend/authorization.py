"""
Registrar Authorization

Signed registrar assertions, checked as a precondition on every registrar-gated
operation. An assertion has the form

    <registrar_id>.<hex HMAC-SHA256(secret, registrar_id)>
"""

from Crypto.Hash import HMAC, SHA256

from errors import Unauthorized


class RegistrarAuthorizer:
    def __init__(self, secret: bytes):
        if not secret:
            raise ValueError("Registrar secret must not be empty")
        self._secret = secret

    def _mac(self, registrar_id: str) -> HMAC.HMAC:
        return HMAC.new(self._secret, registrar_id.encode(), digestmod=SHA256)

    def assertion_for(self, registrar_id: str) -> str:
        if not registrar_id or "." in registrar_id:
            raise ValueError("registrar_id must be non-empty and contain no '.'")
        return f"{registrar_id}.{self._mac(registrar_id).hexdigest()}"

    def require(self, assertion) -> str:
        """Return the registrar id carried by a valid assertion, else raise Unauthorized."""
        if not isinstance(assertion, str) or "." not in assertion:
            raise Unauthorized("Registrar assertion required")
        registrar_id, _, tag = assertion.rpartition(".")
        if not registrar_id:
            raise Unauthorized("Registrar assertion required")
        try:
            # constant-time comparison
            self._mac(registrar_id).hexverify(tag)
        except ValueError:
            raise Unauthorized("Invalid registrar assertion")
        return registrar_id
