from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework.test import APIClient

from common.permissions import get_user_role, user_has_capability
from core.models import AuditLog, User


class RolePermissionCoreTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.viewer = self.user_model.objects.create_user(username="viewer-core", password="pass1234")
        self.manager = self.user_model.objects.create_user(username="manager-core", password="pass1234", role=User.Role.MANAGER)
        self.admin = self.user_model.objects.create_user(username="admin-core", password="pass1234", role=User.Role.ADMIN)

    def test_new_users_default_to_viewer(self):
        self.assertEqual(self.viewer.role, User.Role.VIEWER)
        self.assertEqual(get_user_role(self.viewer), User.Role.VIEWER)

    def test_capability_matrix(self):
        self.assertTrue(user_has_capability(self.viewer, "inventory.view"))
        self.assertFalse(user_has_capability(self.viewer, "transaction.process"))
        self.assertTrue(user_has_capability(self.manager, "transaction.process"))
        self.assertFalse(user_has_capability(self.manager, "inventory.sync"))
        self.assertTrue(user_has_capability(self.admin, "inventory.sync"))
        self.assertFalse(user_has_capability(self.admin, "unknown.capability"))

    def test_manager_cannot_manage_users_and_denial_is_logged(self):
        self.client.force_authenticate(user=self.manager)
        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.post(
                "/api/v1/users/",
                {"username": "new-user", "email": "new@example.com", "password": "pass12345"},
                format="json",
            )

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")
        self.assertTrue(any("permission_denied" in message for message in cm.output))

    def test_admin_can_create_user_with_role(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.post(
            "/api/v1/users/",
            {"username": "picker", "email": "Picker@Example.com", "password": "pass12345", "role": "manager"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        created = self.user_model.objects.get(username="picker")
        self.assertEqual(created.role, User.Role.MANAGER)
        self.assertEqual(created.email, "picker@example.com")
        self.assertTrue(created.check_password("pass12345"))
        self.assertNotIn("password", response.json())

    def test_user_create_rejects_case_insensitive_duplicate_email(self):
        self.user_model.objects.create_user(username="existing-user", email="existing@example.com", password="pass1234")
        self.client.force_authenticate(user=self.admin)

        response = self.client.post(
            "/api/v1/users/",
            {"username": "other-user", "email": "EXISTING@example.com", "password": "pass12345"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertEqual(response.json()["errors"], {"email": ["A user with this email already exists."]})

    def test_destroy_deactivates_user(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.delete(f"/api/v1/users/{self.viewer.id}/")

        self.assertEqual(response.status_code, 204)
        self.viewer.refresh_from_db()
        self.assertFalse(self.viewer.is_active)
        self.assertTrue(AuditLog.objects.filter(action="user.deactivate", entity_id=self.viewer.id).exists())

    def test_me_is_available_to_every_role(self):
        self.client.force_authenticate(user=self.viewer)
        response = self.client.get("/api/v1/users/me/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["username"], "viewer-core")
        self.assertEqual(response.json()["role"], "viewer")

    def test_unauthenticated_requests_use_error_envelope(self):
        response = self.client.get("/api/v1/inventory/")

        self.assertEqual(response.status_code, 401)
        payload = response.json()
        self.assertEqual(sorted(payload.keys()), ["code", "errors", "message", "status"])
        self.assertEqual(payload["code"], "not_authenticated")
        self.assertEqual(payload["status"], 401)


class TokenLoginTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = get_user_model().objects.create_user(
            username="login-user",
            email="login@example.com",
            password="pass12345",
            role=User.Role.MANAGER,
        )

    def test_login_with_username(self):
        response = self.client.post("/api/v1/token/", {"username": "login-user", "password": "pass12345"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertIn("access", response.json())
        self.assertIn("refresh", response.json())

    def test_login_with_email(self):
        response = self.client.post("/api/v1/token/", {"username": "LOGIN@example.com", "password": "pass12345"}, format="json")

        self.assertEqual(response.status_code, 200)
        access = response.json()["access"]

        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {access}")
        me = self.client.get("/api/v1/users/me/")
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.json()["email"], "login@example.com")

    def test_login_with_wrong_password_fails(self):
        response = self.client.post("/api/v1/token/", {"username": "login-user", "password": "wrong-pass"}, format="json")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "authentication_failed")


class AuditLogTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.admin = get_user_model().objects.create_user(username="audit-admin", password="pass1234", role=User.Role.ADMIN)

    def test_user_update_writes_audit_log_with_request_id(self):
        self.client.force_authenticate(user=self.admin)
        target = get_user_model().objects.create_user(username="audited", password="pass1234")

        res = self.client.patch(
            f"/api/v1/users/{target.id}/",
            {"role": "manager"},
            format="json",
            HTTP_X_REQUEST_ID="req-123",
        )

        self.assertEqual(res.status_code, 200)
        log = AuditLog.objects.get(action="user.update", entity="user", request_id="req-123")
        self.assertEqual(log.before_snapshot["role"], "viewer")
        self.assertEqual(log.after_snapshot["role"], "manager")
        self.assertEqual(log.actor, self.admin)

    def test_audit_logs_are_read_only(self):
        self.client.force_authenticate(user=self.admin)
        log = AuditLog.objects.create(action="test.action", entity="test", actor=self.admin)

        patch_res = self.client.patch(f"/api/v1/admin/audit-logs/{log.id}/", {"action": "changed"}, format="json")
        delete_res = self.client.delete(f"/api/v1/admin/audit-logs/{log.id}/")

        self.assertEqual(patch_res.status_code, 405)
        self.assertEqual(delete_res.status_code, 405)

    def test_audit_log_filters_and_export(self):
        self.client.force_authenticate(user=self.admin)
        AuditLog.objects.create(action="inventory.delete", entity="inventory_item", actor=self.admin)
        AuditLog.objects.create(action="warehouse_zone.create", entity="warehouse_zone", actor=self.admin)

        response = self.client.get("/api/v1/admin/audit-logs/", {"entity": "inventory_item"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual([row["action"] for row in response.json()["results"]], ["inventory.delete"])

        export = self.client.get("/api/v1/admin/audit-logs/export/")
        self.assertEqual(export.status_code, 200)
        self.assertEqual(export["Content-Type"], "text/csv")
        body = export.content.decode()
        self.assertIn("inventory.delete", body)
        self.assertIn("audit-admin", body)


class HealthCheckTests(TestCase):
    def test_healthz_and_readyz(self):
        client = APIClient()

        health = client.get("/healthz/")
        ready = client.get("/readyz/")

        self.assertEqual(health.status_code, 200)
        self.assertEqual(health.json()["status"], "ok")
        self.assertEqual(ready.status_code, 200)
        self.assertEqual(ready.json()["status"], "ready")
