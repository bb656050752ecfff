import base64
import unittest

from money_tracker.auth import (
    create_session_token,
    encode_password_hash,
    hash_password,
    is_valid_session_token,
    verify_credentials,
    verify_password,
)


class CredentialTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.hash_b64 = encode_password_hash(hash_password("hunter2"))

    def test_accepts_matching_credentials(self) -> None:
        self.assertTrue(verify_credentials("me", "hunter2", "me", self.hash_b64))

    def test_rejects_wrong_username_or_password(self) -> None:
        self.assertFalse(verify_credentials("you", "hunter2", "me", self.hash_b64))
        self.assertFalse(verify_credentials("me", "wrong", "me", self.hash_b64))

    def test_rejects_when_not_configured(self) -> None:
        self.assertFalse(verify_credentials("me", "hunter2", None, self.hash_b64))
        with self.assertLogs("money_tracker.auth", level="ERROR"):
            self.assertFalse(verify_password("hunter2", None))

    def test_rejects_malformed_hash(self) -> None:
        with self.assertLogs("money_tracker.auth", level="ERROR"):
            self.assertFalse(verify_password("hunter2", encode_password_hash("not-a-hash")))


class SessionTokenTests(unittest.TestCase):
    def test_token_round_trip(self) -> None:
        token = create_session_token("s3cret", now=1700000000)

        self.assertEqual(base64.b64decode(token).decode(), "1700000000000:s3cret")
        self.assertTrue(is_valid_session_token(token, "s3cret"))

    def test_token_with_other_secret_is_invalid(self) -> None:
        token = create_session_token("s3cret")

        self.assertFalse(is_valid_session_token(token, "different"))

    def test_garbage_tokens_are_invalid(self) -> None:
        self.assertFalse(is_valid_session_token(None, "s3cret"))
        self.assertFalse(is_valid_session_token("%%%", "s3cret"))
        self.assertFalse(
            is_valid_session_token(base64.b64encode(b"no-separator").decode(), "s3cret")
        )

    def test_missing_secret(self) -> None:
        with self.assertRaises(RuntimeError):
            create_session_token(None)
        self.assertFalse(is_valid_session_token(create_session_token("x"), None))


if __name__ == "__main__":
    unittest.main()
