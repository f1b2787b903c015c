"""
Unit tests for the MIME message encoders.
Covers boundary generation, base64 line wrapping, and both message layouts.
"""

import base64
import email
import re

import pytest

from mime_message import (
    ALPHABETS,
    Alphabet,
    Attachment,
    AttachmentReadError,
    BoundaryAlphabetError,
    ChunkingPreconditionError,
    EmailEnvelope,
    EncodingInputError,
    MessageEncodingError,
    chunk_split,
    create_message,
    create_message_with_attachment,
    random_string,
)

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR" + bytes(range(256)) * 3


def _decode_attachment_message(raw: str) -> str:
    return base64.urlsafe_b64decode(raw).decode("utf-8")


def _split_parts(text: str):
    boundary = re.match(r"Content-Type: multipart/mixed; boundary=(\w+) \n", text).group(1)
    return boundary, text.split(f"--{boundary}")


class TestRandomString:
    """Test random boundary generation."""

    def test_alphanum_boundary_has_requested_length_and_alphabet(self):
        """A 32 character alphanum string only uses the 62 declared characters."""
        value = random_string(32, "alphanum")

        assert len(value) == 32
        assert set(value) <= set(ALPHABETS[Alphabet.ALPHANUM])
        assert len(ALPHABETS[Alphabet.ALPHANUM]) == 62

    def test_successive_boundaries_do_not_repeat(self):
        """1000 samples should contain no duplicates."""
        samples = {random_string(32, Alphabet.ALPHANUM) for _ in range(1000)}
        assert len(samples) == 1000

    def test_alpha_and_number_alphabets(self):
        assert random_string(50, "alpha").isalpha()
        assert random_string(50, "number").isdigit()

    def test_unknown_kind_is_rejected(self):
        """An unrecognized alphabet must fail rather than produce an empty string."""
        with pytest.raises(BoundaryAlphabetError):
            random_string(32, "hex")

    @pytest.mark.parametrize("length", [0, -1])
    def test_non_positive_length_is_rejected(self, length):
        with pytest.raises(BoundaryAlphabetError):
            random_string(length)


class TestChunkSplit:
    """Test base64 line wrapping."""

    def test_empty_body_returns_empty_string(self):
        assert chunk_split("", 76, "\n") == ""

    def test_terminates_the_final_short_line(self):
        assert chunk_split("abcde", 2, "\n") == "ab\ncd\ne\n"

    def test_limit_larger_than_body_appends_end_once(self):
        assert chunk_split("abc", 76, "\r\n") == "abc\r\n"

    def test_200_characters_at_76_give_three_lines(self):
        """76 + 76 + 48, each followed by the terminator."""
        lines = chunk_split("x" * 200, 76, "\n").split("\n")

        assert lines[-1] == ""
        assert [len(line) for line in lines[:-1]] == [76, 76, 48]

    @pytest.mark.parametrize("limit", [1, 3, 7, 76, 500])
    def test_stripping_terminators_restores_body(self, limit):
        body = base64.b64encode(bytes(range(256))).decode()
        chunked = chunk_split(body, limit, "\n")

        assert chunked.endswith("\n")
        assert chunked.replace("\n", "") == body

    @pytest.mark.parametrize("limit", [0, -5])
    def test_non_positive_limit_fails_fast(self, limit):
        with pytest.raises(ChunkingPreconditionError):
            chunk_split("abc", limit, "\n")


class TestEmailEnvelope:
    """Test header value validation."""

    @pytest.mark.parametrize("field", ["sender", "to", "subject"])
    def test_newline_in_header_is_rejected(self, field):
        values = {"sender": "a@x.com", "to": "b@x.com", "subject": "Hi"}
        values[field] += "\r\nBcc: evil@x.com"

        with pytest.raises(EncodingInputError):
            EmailEnvelope(**values)

    @pytest.mark.parametrize("field", ["sender", "to", "subject"])
    def test_empty_field_is_rejected(self, field):
        values = {"sender": "a@x.com", "to": "b@x.com", "subject": "Hi"}
        values[field] = "  "

        with pytest.raises(EncodingInputError):
            EmailEnvelope(**values)

    def test_input_errors_share_a_base_class(self):
        with pytest.raises(MessageEncodingError):
            EmailEnvelope("a@x.com", "b@x.com", "bad\nsubject")

    def test_unicode_subject_is_accepted(self):
        envelope = EmailEnvelope("a@x.com", "b@x.com", "Grüße ✓")
        assert envelope.subject == "Grüße ✓"


class TestCreateMessage:
    """Test the plain, attachment-free message."""

    def test_trial_scenario(self):
        message = create_message(EmailEnvelope("a@x.com", "b@x.com", "Hi"), "Trial!")

        assert base64.b64decode(message.raw, validate=True) == (
            b"From: a@x.com\r\nTo: b@x.com\r\nSubject: Hi\r\n\r\nTrial!"
        )

    def test_uses_standard_alphabet(self):
        """Content chosen so the standard alphabet emits '+' and '/'."""
        message = create_message(EmailEnvelope("a@x.com", "b@x.com", "Hi"), "???>>>~~~" * 10)

        assert "+" in message.raw or "/" in message.raw
        assert base64.b64decode(message.raw, validate=True).endswith(b"???>>>~~~")

    def test_empty_content(self):
        message = create_message(EmailEnvelope("a@x.com", "b@x.com", "Hi"), "")
        assert base64.b64decode(message.raw) == b"From: a@x.com\r\nTo: b@x.com\r\nSubject: Hi\r\n\r\n"

    def test_payload_shape(self):
        message = create_message(EmailEnvelope("a@x.com", "b@x.com", "Hi"), "Trial!")
        assert message.as_payload() == {"raw": message.raw}


class TestAttachment:
    """Test attachment loading and sniffing."""

    def test_content_type_is_sniffed_from_bytes(self):
        """The extension is ignored; only the bytes decide."""
        assert Attachment(PNG_BYTES, "report.txt").content_type == "image/png"

    def test_from_file_reads_bytes_and_defaults_name(self, tmp_path):
        path = tmp_path / "pic.png"
        path.write_bytes(PNG_BYTES)

        attachment = Attachment.from_file(path)

        assert attachment.raw_bytes == PNG_BYTES
        assert attachment.file_name == "pic.png"

    def test_from_file_keeps_given_name(self, tmp_path):
        path = tmp_path / "stored.bin"
        path.write_bytes(b"data")

        assert Attachment.from_file(path, file_name="Original Name.bin").file_name == "Original Name.bin"

    def test_missing_file_raises_attachment_read_error(self, tmp_path):
        with pytest.raises(AttachmentReadError) as exc_info:
            Attachment.from_file(tmp_path / "nope.png")

        assert isinstance(exc_info.value, OSError)
        assert isinstance(exc_info.value.__cause__, FileNotFoundError)

    def test_newline_in_file_name_is_rejected(self):
        with pytest.raises(EncodingInputError):
            Attachment(b"data", 'x.txt"\r\nX-Injected: 1')

    def test_empty_file_name_passes_through(self):
        assert Attachment(b"data", "").file_name == ""


class TestCreateMessageWithAttachment:
    """Test the multipart message with one attachment."""

    envelope = EmailEnvelope("a@x.com", "b@x.com", "Hi")

    def test_exact_bytes_for_fixed_boundary(self):
        boundary = "B" * 32
        message = create_message_with_attachment(
            self.envelope, "Trial!", Attachment(b"hello", "a.txt"), boundary=boundary
        )

        assert _decode_attachment_message(message.raw) == (
            f"Content-Type: multipart/mixed; boundary={boundary} \n"
            "MIME-Version: 1.0\n"
            "to: b@x.com\n"
            "from: a@x.com\n"
            "subject: Hi\n"
            "\n"
            f"--{boundary}\n"
            'Content-Type: text/plain; charset="UTF-8"\n'
            "MIME-Version: 1.0\n"
            "Content-Transfer-Encoding: 7bit\n"
            "\n"
            "Trial!\n"
            "\n"
            f"--{boundary}\n"
            'Content-Type: text/plain; charset=utf-8; name="a.txt" \n'
            "MIME-Version: 1.0\n"
            "Content-Transfer-Encoding: base64\n"
            'Content-Disposition: attachment; filename="a.txt" \n'
            "\n"
            "aGVsbG8=\n"
            f"--{boundary}--"
        )

    def test_uses_url_safe_alphabet(self):
        message = create_message_with_attachment(self.envelope, "Trial!", Attachment(bytes(range(256)) * 8, "b.bin"))

        assert "+" not in message.raw
        assert "/" not in message.raw

    def test_generates_a_fresh_boundary(self):
        attachment = Attachment(b"hello", "a.txt")
        first, _ = _split_parts(_decode_attachment_message(
            create_message_with_attachment(self.envelope, "x", attachment).raw))
        second, _ = _split_parts(_decode_attachment_message(
            create_message_with_attachment(self.envelope, "x", attachment).raw))

        assert len(first) == 32
        assert first != second

    def test_two_parts_in_order_then_closing_delimiter(self):
        text = _decode_attachment_message(
            create_message_with_attachment(self.envelope, "Trial!", Attachment(PNG_BYTES, "pic.png")).raw
        )
        _, parts = _split_parts(text)

        assert len(parts) == 4
        assert 'Content-Type: text/plain; charset="UTF-8"' in parts[1]
        assert "Content-Disposition: attachment" in parts[2]
        assert parts[3] == "--"

    def test_attachment_lines_are_wrapped_at_76(self):
        text = _decode_attachment_message(
            create_message_with_attachment(self.envelope, "", Attachment(PNG_BYTES, "pic.png")).raw
        )
        _, parts = _split_parts(text)
        body = parts[2].partition("\n\n")[2]
        lines = body.split("\n")[:-1]

        assert all(len(line) == 76 for line in lines[:-1])
        assert 0 < len(lines[-1]) <= 76

    @pytest.mark.parametrize("file_name", ["pic.png", "résumé 図.png"])
    def test_round_trip_recovers_name_type_and_bytes(self, file_name):
        text = _decode_attachment_message(
            create_message_with_attachment(self.envelope, "Trial!", Attachment(PNG_BYTES, file_name)).raw
        )
        _, parts = _split_parts(text)
        headers, _, body = parts[2].partition("\n\n")

        assert re.search(r'name="(.*)" \n', headers).group(1) == file_name
        assert re.search(r'filename="(.*)" ', headers).group(1) == file_name
        assert re.search(r"Content-Type: (.*); name=", headers).group(1) == "image/png"
        assert base64.b64decode(body.replace("\n", "")) == PNG_BYTES

    def test_stdlib_parser_reads_the_message(self):
        raw = base64.urlsafe_b64decode(
            create_message_with_attachment(self.envelope, "Trial!", Attachment(PNG_BYTES, "pic.png")).raw
        )
        msg = email.message_from_bytes(raw)

        assert msg.is_multipart()
        assert msg["subject"] == "Hi"
        text_part, file_part = msg.get_payload()
        assert text_part.get_payload().strip() == "Trial!"
        assert file_part.get_filename() == "pic.png"
        assert file_part.get_content_type() == "image/png"
        assert file_part.get_payload(decode=True) == PNG_BYTES

    def test_empty_attachment_closes_directly_after_headers(self):
        text = _decode_attachment_message(
            create_message_with_attachment(self.envelope, "x", Attachment(b"", "empty.txt"), boundary="Z" * 32).raw
        )

        assert text.endswith('filename="empty.txt" \n\n' + "--" + "Z" * 32 + "--")
