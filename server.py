import logging
import secrets
import threading
from pathlib import Path
from typing import Optional
from uuid import uuid4

import click
import requests
from flask import Flask, request, jsonify, redirect, render_template, session
from werkzeug.utils import secure_filename

from gmail_client import GmailClient, GmailSendError, MailSender
from mime_message import (
    Attachment,
    AttachmentReadError,
    EmailEnvelope,
    EncodingInputError,
    create_message,
    create_message_with_attachment,
)
from oauth_token import OAuthClient, OAuthError, TokenSource, TokenStore
from settings import Settings

log = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    mailer: Optional[MailSender] = None,
    oauth: Optional[OAuthClient] = None,
) -> Flask:
    settings = settings or Settings.from_env()

    app = Flask(__name__, static_folder="public", static_url_path="/public")
    app.config["MAX_CONTENT_LENGTH"] = settings.max_upload_bytes
    app.secret_key = settings.secret_key or secrets.token_hex(32)

    tokens = TokenSource(TokenStore(settings.token_file))
    mailer = mailer or GmailClient(tokens)

    # The client secret is only read when the OAuth flow is first used, so
    # the upload form can be served before it is configured.
    oauth_lock = threading.Lock()
    deps = {"oauth": oauth}

    def get_oauth() -> OAuthClient:
        with oauth_lock:
            if deps["oauth"] is None:
                deps["oauth"] = OAuthClient.from_client_secrets_file(
                    settings.client_secret_file, redirect_uri=settings.redirect_uri
                )
            return deps["oauth"]

    def send(message):
        try:
            rid = mailer.send(message)
        except (GmailSendError, OAuthError, requests.RequestException) as e:
            app.logger.error("Unable to send email: %s", e)
            return jsonify(ok=False, error=str(e)), 502
        return jsonify(ok=True, id=rid), 200

    @app.get("/")
    def index():
        return render_template("upload.html")

    @app.post("/upload")
    def upload():
        file = request.files.get("file")
        if file is None or not file.filename:
            app.logger.warning("Error while uploading: no file in request")
            return jsonify(ok=False, error="Missing 'file'"), 400

        file_name = file.filename
        uploads_dir = Path(settings.uploads_dir)
        # unique per request: distinct names can sanitize to the same string
        path = uploads_dir / f"{uuid4().hex}-{secure_filename(file_name) or 'upload'}"
        try:
            uploads_dir.mkdir(parents=True, exist_ok=True)
            file.save(path)
        except OSError as e:
            app.logger.warning("Error while preparing the new file: %s", e)
            return jsonify(ok=False, error="Unable to store upload"), 500

        try:
            envelope = EmailEnvelope(settings.mail_from, settings.mail_to, settings.mail_subject)
            attachment = Attachment.from_file(path, file_name=file_name)
            message = create_message_with_attachment(envelope, settings.mail_content, attachment)
        except AttachmentReadError as e:
            app.logger.warning("Error while reading the upload: %s", e)
            return jsonify(ok=False, error=str(e)), 500
        except EncodingInputError as e:
            return jsonify(ok=False, error=str(e)), 400

        return send(message)

    @app.post("/sendEmail")
    def send_email():
        data = request.get_json(silent=True) or {}
        to = data.get("to")
        subject = data.get("subject")
        body = data.get("body")

        if not to or not subject or not body:
            return jsonify(ok=False, error="Missing 'to', 'subject', or 'body'"), 400

        try:
            message = create_message(EmailEnvelope(settings.mail_from, to, subject), body)
        except EncodingInputError as e:
            return jsonify(ok=False, error=str(e)), 400

        return send(message)

    @app.get("/oauth/authorize")
    def oauth_authorize():
        state = secrets.token_urlsafe(16)
        try:
            url, code_verifier = get_oauth().authorization_url(state)
        except OAuthError as e:
            app.logger.error("Unable to start authorization: %s", e)
            return jsonify(ok=False, error=str(e)), 502
        session["oauth_state"] = state
        session["oauth_verifier"] = code_verifier
        return redirect(url, code=302)

    @app.get("/oauth/callback")
    def oauth_callback():
        if request.args.get("error"):
            return jsonify(ok=False, error=request.args["error"]), 400
        if request.args.get("state") != session.pop("oauth_state", None):
            return jsonify(ok=False, error="State mismatch"), 400
        code = request.args.get("code")
        if not code:
            return jsonify(ok=False, error="Missing 'code'"), 400

        try:
            creds = get_oauth().exchange_code(code, code_verifier=session.pop("oauth_verifier", None))
            tokens.set_credentials(creds)
        except OAuthError as e:
            app.logger.error("Unable to retrieve token from web: %s", e)
            return jsonify(ok=False, error=str(e)), 502
        return jsonify(ok=True), 200

    @app.cli.command("authorize")
    def authorize_command():
        """Authorize Gmail access from the console and cache the token."""
        try:
            client = get_oauth()
            url, code_verifier = client.authorization_url(secrets.token_urlsafe(16))
            click.echo("Go to the following link in your browser then type the authorization code:")
            click.echo(url)
            code = click.prompt("Authorization code").strip()
            tokens.set_credentials(client.exchange_code(code, code_verifier=code_verifier))
        except OAuthError as e:
            raise click.ClickException(str(e)) from e
        click.echo(f"Saved token to {settings.token_file}")

    return app


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    settings = Settings.from_env()
    log.info("Serving uploads from %s on :%d", settings.uploads_dir, settings.port)
    create_app(settings).run(host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
