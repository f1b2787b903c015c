import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


class SettingsError(RuntimeError):
    pass


def _require(name: str) -> str:
    value = os.environ.get(name, "").strip()
    if not value:
        raise SettingsError(f"Missing env {name}")
    return value


def _int(name: str, default: int) -> int:
    value = os.environ.get(name, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise SettingsError(f"{name} must be an integer, got {value!r}") from None


@dataclass
class Settings:
    mail_from: str
    mail_to: str
    mail_subject: str = "Sent from dropzone"
    mail_content: str = "You just uploaded this file!"
    uploads_dir: str = "./public/uploads/"
    token_file: str = "token.json"
    client_secret_file: str = "client_secret.json"
    redirect_uri: Optional[str] = None
    secret_key: Optional[str] = None
    max_upload_bytes: int = 10 << 20
    port: int = 8080

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the environment, reading a local .env first."""
        load_dotenv()
        return cls(
            mail_from=_require("MAIL_FROM"),
            mail_to=_require("MAIL_TO"),
            mail_subject=os.environ.get("MAIL_SUBJECT", cls.mail_subject),
            mail_content=os.environ.get("MAIL_CONTENT", cls.mail_content),
            uploads_dir=os.environ.get("UPLOADS_DIR", cls.uploads_dir),
            token_file=os.environ.get("TOKEN_FILE", cls.token_file),
            client_secret_file=os.environ.get("CLIENT_SECRET_FILE", cls.client_secret_file),
            redirect_uri=os.environ.get("OAUTH_REDIRECT_URI") or None,
            secret_key=os.environ.get("SECRET_KEY") or None,
            max_upload_bytes=_int("MAX_UPLOAD_BYTES", cls.max_upload_bytes),
            port=_int("PORT", cls.port),
        )
