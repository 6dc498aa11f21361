from __future__ import annotations

import os
import unittest
from datetime import timedelta
from unittest.mock import patch

from backoffice.errors import ApiError
from backoffice.security import (
    actor_from_claims,
    create_access_token,
    decode_token,
    has_permission,
    normalize_permissions,
    require_permission,
)
from backoffice.settings import get_settings


class PermissionTests(unittest.TestCase):
    def test_normalize_drops_unknown_modules_and_implies_view(self) -> None:
        permissions = normalize_permissions(
            {
                "payroll": {"approve": True},
                "table_bookings": True,
                "admin": {"view": True},
            }
        )
        self.assertEqual(permissions["payroll"], {"view": True, "approve": True, "send": False})
        self.assertEqual(permissions["table_bookings"], {"view": True, "edit": True})
        self.assertNotIn("admin", permissions)

    def test_normalize_of_garbage_is_all_denied(self) -> None:
        permissions = normalize_permissions("everything")  # type: ignore[arg-type]
        self.assertFalse(any(value for actions in permissions.values() for value in actions.values()))

    def test_has_permission_checks_grants_and_super_admin(self) -> None:
        claims = {"permissions": {"table_bookings": {"view": True}}}
        self.assertTrue(has_permission(claims, "table_bookings", "view"))
        self.assertFalse(has_permission(claims, "table_bookings", "edit"))
        self.assertFalse(has_permission(claims, "payroll", "view"))
        self.assertTrue(has_permission({"is_super_admin": True}, "payroll", "send"))
        self.assertFalse(has_permission({"is_super_admin": True}, "payroll", "delete"))

    def test_require_permission_rejects_unknown_actions_at_definition(self) -> None:
        with self.assertRaises(ValueError):
            require_permission("payroll", "delete")

    def test_actor_prefers_username(self) -> None:
        self.assertEqual(actor_from_claims({"username": "maria", "sub": "7"}), "maria")
        self.assertEqual(actor_from_claims({"sub": "7"}), "7")
        self.assertEqual(actor_from_claims({}), "unknown")


class TokenTests(unittest.TestCase):
    def setUp(self) -> None:
        get_settings.cache_clear()

    def tearDown(self) -> None:
        get_settings.cache_clear()

    def test_access_token_roundtrip(self) -> None:
        with patch.dict(os.environ, {"JWT_SECRET": "unit-test-secret"}, clear=False):
            get_settings.cache_clear()
            token = create_access_token(sub="42", username="maria", permissions={"payroll": {"view": True}})
            claims = decode_token(token)

        self.assertEqual(claims["sub"], "42")
        self.assertEqual(claims["username"], "maria")
        self.assertEqual(claims["typ"], "access")
        self.assertTrue(claims["permissions"]["payroll"]["view"])
        self.assertFalse(claims["permissions"]["payroll"]["approve"])

    def test_expired_or_foreign_tokens_are_rejected(self) -> None:
        with patch.dict(os.environ, {"JWT_SECRET": "unit-test-secret"}, clear=False):
            get_settings.cache_clear()
            expired = create_access_token(sub="42", username="maria", expires_delta=timedelta(minutes=-5))
            with self.assertRaises(ApiError) as ctx:
                decode_token(expired)
            self.assertEqual(ctx.exception.status_code, 401)

        with patch.dict(os.environ, {"JWT_SECRET": "another-secret"}, clear=False):
            get_settings.cache_clear()
            foreign = create_access_token(sub="42", username="maria")

        with patch.dict(os.environ, {"JWT_SECRET": "unit-test-secret"}, clear=False):
            get_settings.cache_clear()
            with self.assertRaises(ApiError) as ctx:
                decode_token(foreign)
            self.assertEqual(ctx.exception.code, "INVALID_TOKEN")


if __name__ == "__main__":
    unittest.main()
