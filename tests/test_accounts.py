import unittest
from unittest import mock

import jwt
from bson import ObjectId

import accounts
import config
import security
from errors import AppError, ErrorKind
from factories import PASSWORD, make_db, make_user
from schemas import Role
from security import Principal


class TokenTestCase(unittest.TestCase):
    def test_issue_and_verify(self):
        token = security.issue_token("abc", "a@example.com", Role.ADMIN.value)
        principal = security.verify_token(token)
        self.assertEqual(principal, Principal(user_id="abc", email="a@example.com", role="ADMIN"))
        self.assertTrue(principal.is_admin)

    def test_tampered_token_is_unauthorized(self):
        token = jwt.encode({"id": "abc"}, "some-other-secret", algorithm=config.JWT_ALGO)
        with self.assertRaises(AppError) as ctx:
            security.verify_token(token)
        self.assertEqual(ctx.exception.kind, ErrorKind.UNAUTHORIZED)

    def test_expired_token_is_unauthorized(self):
        with mock.patch.object(config, "JWT_EXPIRE_DAYS", -1):
            token = security.issue_token("abc", "a@example.com", "USER")
        with self.assertRaises(AppError) as ctx:
            security.verify_token(token)
        self.assertEqual(ctx.exception.kind, ErrorKind.UNAUTHORIZED)
        self.assertEqual(ctx.exception.message, "Token expired")

    def test_token_without_user_id(self):
        token = security.create_token({"email": "a@example.com"})
        with self.assertRaises(AppError) as ctx:
            security.verify_token(token)
        self.assertEqual(ctx.exception.kind, ErrorKind.UNAUTHORIZED)

    def test_password_hash(self):
        hashed = security.hash_password("hunter22")
        self.assertNotIn("hunter22", hashed)
        self.assertTrue(security.verify_password("hunter22", hashed))
        self.assertFalse(security.verify_password("hunter23", hashed))
        self.assertFalse(security.verify_password("hunter22", ""))
        self.assertNotEqual(hashed, security.hash_password("hunter22"))


class AccountsTestCase(unittest.TestCase):
    def setUp(self):
        self.db = make_db()

    def test_register_then_login(self):
        user = accounts.register(self.db, "Dana", "Dana@Example.com", "pass1234")
        self.assertEqual(user["email"], "dana@example.com")
        self.assertEqual(user["role"], "USER")
        self.assertNotIn("password_hash", user)

        result = accounts.login(self.db, "dana@example.com", "pass1234")
        self.assertEqual(security.verify_token(result["token"]).user_id, user["id"])
        self.assertIsNotNone(result["user"]["last_login"])

    def test_register_rejects_duplicates_and_short_passwords(self):
        accounts.register(self.db, "Dana", "dana@example.com", "pass1234")
        with self.assertRaises(AppError) as ctx:
            accounts.register(self.db, "Other", "DANA@example.com", "pass1234")
        self.assertEqual(ctx.exception.kind, ErrorKind.DUPLICATE_RESOURCE)
        with self.assertRaises(AppError) as ctx:
            accounts.register(self.db, "Eve", "eve@example.com", "123")
        self.assertEqual(ctx.exception.kind, ErrorKind.BAD_REQUEST)

    def test_login_failures(self):
        make_user(self.db, "Frank")
        make_user(self.db, "Gone", is_disabled=True)
        cases = [
            ("frank@example.com", "wrong-password", ErrorKind.UNAUTHORIZED),
            ("nobody@example.com", PASSWORD, ErrorKind.UNAUTHORIZED),
            ("gone@example.com", PASSWORD, ErrorKind.FORBIDDEN),
        ]
        for email, password, kind in cases:
            with self.subTest(email=email):
                with self.assertRaises(AppError) as ctx:
                    accounts.login(self.db, email, password)
                self.assertEqual(ctx.exception.kind, kind)

    def test_admin_login_requires_admin_role(self):
        make_user(self.db, "Frank")
        make_user(self.db, "Root", role=Role.ADMIN)
        with self.assertRaises(AppError) as ctx:
            accounts.login(self.db, "frank@example.com", PASSWORD, admin_only=True)
        self.assertEqual(ctx.exception.kind, ErrorKind.FORBIDDEN)
        self.assertEqual(accounts.login(self.db, "root@example.com", PASSWORD, admin_only=True)["user"]["role"], "ADMIN")

    def test_update_profile(self):
        me = make_user(self.db, "Gina")
        make_user(self.db, "Hank")

        self.assertEqual(accounts.update_profile(self.db, me, name="Gina B")["name"], "Gina B")

        with self.assertRaises(AppError) as ctx:
            accounts.update_profile(self.db, me, email="new@example.com")
        self.assertEqual(ctx.exception.kind, ErrorKind.BAD_REQUEST)
        with self.assertRaises(AppError) as ctx:
            accounts.update_profile(self.db, me, email="new@example.com", current_password="nope")
        self.assertEqual(ctx.exception.kind, ErrorKind.BAD_REQUEST)
        with self.assertRaises(AppError) as ctx:
            accounts.update_profile(self.db, me, email="hank@example.com", current_password=PASSWORD)
        self.assertEqual(ctx.exception.kind, ErrorKind.DUPLICATE_RESOURCE)

        profile = accounts.update_profile(self.db, me, email="new@example.com", current_password=PASSWORD)
        self.assertEqual(profile["email"], "new@example.com")

    def test_change_password(self):
        me = make_user(self.db, "Ivy")
        for current, new in ((PASSWORD + "x", "brandnew1"), (PASSWORD, "123"), (PASSWORD, PASSWORD)):
            with self.subTest(current=current, new=new):
                with self.assertRaises(AppError) as ctx:
                    accounts.change_password(self.db, me, current, new)
                self.assertEqual(ctx.exception.kind, ErrorKind.BAD_REQUEST)

        accounts.change_password(self.db, me, PASSWORD, "brandnew1")
        self.assertEqual(accounts.login(self.db, "ivy@example.com", "brandnew1")["user"]["id"], me.user_id)

    def test_principal_role_is_read_from_store(self):
        me = make_user(self.db, "Jo", role=Role.ADMIN)
        token = security.issue_token(me.user_id, me.email, "ADMIN")
        self.db["user"].update_one({"_id": ObjectId(me.user_id)}, {"$set": {"role": "USER"}})
        self.assertFalse(security._load_principal(self.db, token).is_admin)

        self.db["user"].update_one({"_id": ObjectId(me.user_id)}, {"$set": {"is_banned": True}})
        with self.assertRaises(AppError) as ctx:
            security._load_principal(self.db, token)
        self.assertEqual(ctx.exception.kind, ErrorKind.FORBIDDEN)


if __name__ == "__main__":
    unittest.main()
