import unittest

from .testing import auth_header, descriptor, make_app

SESSION = {"className": "CS101", "classTime": "09:00", "gracePeriod": 15, "date": "2024-05-06"}


class RouteTestCase(unittest.TestCase):
    def setUp(self):
        self.app, self.store, self.notifications = make_app()
        self.client = self.app.test_client()
        self.admin = auth_header(self.app, "admin")
        self.teacher = auth_header(self.app, "teacher", identity="7", class_assigned="CS101")

    def tearDown(self):
        self.store.close()

    def register(self, roll, name, class_name="CS101", head=None, **extra):
        payload = {"fullName": name, "rollNo": roll, "className": class_name}
        if head is not None:
            payload["faceDescriptors"] = [descriptor(head)]
        payload.update(extra)
        response = self.client.post("/api/students/register", json=payload, headers=self.admin)
        self.assertEqual(response.status_code, 201, response.json)
        return response.json["student"]

    def start_session(self, **overrides):
        response = self.client.post("/api/sessions", json=dict(SESSION, **overrides), headers=self.teacher)
        self.assertEqual(response.status_code, 201, response.json)
        return response.json

    def recognize(self, head, timestamp="2024-05-06T09:05:00", **extra):
        payload = {"descriptor": descriptor(head), "timestamp": timestamp}
        payload.update(extra)
        return self.client.post("/api/attendance/recognize", json=payload, headers=self.teacher)


class TestMonitoring(RouteTestCase):
    def test_index(self):
        response = self.client.get("/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data, b"Attendance backend up")

    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.json["database"], "connected")
        self.assertEqual(response.json["status"], "healthy")


class TestAccessControl(RouteTestCase):
    def test_missing_token(self):
        self.assertEqual(self.client.get("/api/students").status_code, 401)

    def test_teacher_cannot_read_stats(self):
        response = self.client.get("/api/admin/stats", headers=self.teacher)
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json["message"], "Forbidden: wrong role")
        self.assertEqual(response.json["status"], "error")

    def test_teacher_cannot_export(self):
        self.assertEqual(self.client.get("/api/attendance/export/csv", headers=self.teacher).status_code, 403)


class TestAuthRoutes(RouteTestCase):
    def test_admin_register_login_and_manage_teachers(self):
        response = self.client.post("/api/admin/register", json={
            "name": "Head", "email": "head@school.edu", "password": "secret1", "institutionDomain": "school.edu",
        })
        self.assertEqual(response.status_code, 201)

        response = self.client.post("/api/admin/login", json={"email": "head@school.edu", "password": "secret1"})
        self.assertEqual(response.status_code, 200)
        headers = {"Authorization": f"Bearer {response.json['token']}"}

        response = self.client.post("/api/teachers/register", headers=headers, json={
            "name": "Tara", "email": "tara@school.edu", "password": "secret1", "classAssigned": "CS101",
        })
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json["teacher"]["classAssigned"], "CS101")

        response = self.client.get("/api/teachers", headers=headers)
        self.assertEqual([t["email"] for t in response.json], ["tara@school.edu"])
        self.assertNotIn("password_hash", response.json[0])

        response = self.client.post("/api/teachers/login", json={"email": "tara@school.edu", "password": "secret1"})
        self.assertEqual(response.json["classAssigned"], "CS101")

    def test_domain_mismatch(self):
        response = self.client.post("/api/admin/register", json={
            "name": "Head", "email": "head@gmail.com", "password": "secret1", "institutionDomain": "school.edu",
        })
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json["message"], "Email domain mismatch")

    def test_bad_credentials(self):
        response = self.client.post("/api/teachers/login", json={"email": "x@school.edu", "password": "secret1"})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json["message"], "Invalid credentials")


class TestStudentRoutes(RouteTestCase):
    def test_register_uses_wire_names(self):
        student = self.register("A1", "Asha Rao", head=0.1, parentNumber="9876543210")
        self.assertEqual(student["rollNo"], "A1")
        self.assertEqual(student["descriptorCount"], 1)
        self.assertEqual(student["parentNumber"], "9876543210")
        self.assertTrue(student["qrCode"].startswith("data:image/png;base64,"))

    def test_duplicate_roll_number(self):
        self.register("A1", "Asha Rao")
        response = self.client.post(
            "/api/students/register",
            json={"fullName": "Other", "rollNo": "A1", "className": "CS101"},
            headers=self.admin,
        )
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json["message"], "Roll number exists")
        self.assertIn("error_code", response.json)

    def test_missing_fields_are_rejected(self):
        response = self.client.post("/api/students/register", json={"fullName": "Asha"}, headers=self.admin)
        self.assertEqual(response.status_code, 422)
        self.assertIn("rollNo", response.json["errors"]["json"])

    def test_bad_descriptor(self):
        response = self.client.post(
            "/api/students/register",
            json={"fullName": "Asha", "rollNo": "A1", "className": "CS101", "faceDescriptors": [[0.1, 0.2]]},
            headers=self.admin,
        )
        self.assertEqual(response.status_code, 400)

    def test_list_get_update_delete(self):
        student = self.register("A1", "Asha Rao")
        self.register("B1", "Bilal", class_name="CS102")

        response = self.client.get("/api/students?className=CS102", headers=self.teacher)
        self.assertEqual([s["rollNo"] for s in response.json], ["B1"])

        url = f"/api/students/{student['id']}"
        response = self.client.put(url, json={"section": "B"}, headers=self.teacher)
        self.assertEqual(response.json["section"], "B")

        response = self.client.put(url, json={"faceDescriptors": [descriptor(0.3)]}, headers=self.teacher)
        self.assertEqual(response.status_code, 400)

        self.assertEqual(self.client.delete(url, headers=self.admin).status_code, 200)
        self.assertEqual(self.client.get(url, headers=self.admin).status_code, 404)

    def test_descriptors_and_enrolled(self):
        student = self.register("A1", "Asha Rao")
        self.assertEqual(self.client.get("/api/students/enrolled", headers=self.teacher).json, [])

        response = self.client.post(
            f"/api/students/{student['id']}/descriptors", json={"descriptor": descriptor(0.1)}, headers=self.teacher
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json["descriptorCount"], 1)

        enrolled = self.client.get("/api/students/enrolled", headers=self.teacher).json
        self.assertEqual(len(enrolled[0]["faceDescriptors"][0]), 128)

    def test_qr_png(self):
        student = self.register("A1", "Asha Rao")
        response = self.client.get(f"/api/students/{student['id']}/qr", headers=self.teacher)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.mimetype, "image/png")
        self.assertTrue(response.data.startswith(b"\x89PNG"))


class TestAttendanceRoutes(RouteTestCase):
    def setUp(self):
        super().setUp()
        self.asha = self.register("A1", "Asha Rao", head=0.1, parentEmail="asha.parent@mail.com")
        self.bilal = self.register("A2", "Bilal Khan", head=0.9, parentNumber="9876543210")

    def test_recognize_marks_once(self):
        session = self.start_session()
        first = self.recognize(0.1, sessionId=session["id"])
        self.assertEqual(first.status_code, 200)
        self.assertTrue(first.json["matched"])
        self.assertTrue(first.json["created"])
        self.assertEqual(first.json["status"], "Present")
        self.assertEqual(first.json["student"]["rollNo"], "A1")
        self.assertEqual(first.json["record"]["confidence"], "1.00")

        second = self.recognize(0.1, timestamp="2024-05-06T09:40:00", sessionId=session["id"])
        self.assertFalse(second.json["created"])
        self.assertEqual(second.json["status"], "Present")

    def test_recognize_late_with_inline_session(self):
        response = self.recognize(0.9, timestamp="2024-05-06T09:15:01", session=SESSION)
        self.assertEqual(response.json["status"], "Late")

    def test_unknown_face(self):
        response = self.client.post(
            "/api/attendance/recognize", json={"descriptor": descriptor(0.1, 2.0)}, headers=self.teacher
        )
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json["matched"])
        self.assertEqual(self.store.count_attendance(), 0)

    def test_malformed_probe(self):
        response = self.client.post(
            "/api/attendance/recognize", json={"descriptor": [0.1, 0.2]}, headers=self.teacher
        )
        self.assertEqual(response.status_code, 400)

    def test_unknown_session(self):
        self.assertEqual(self.recognize(0.1, sessionId="999").status_code, 404)

    def test_bulk_mark_skips_unknown(self):
        response = self.client.post("/api/attendance/mark", headers=self.teacher, json={
            "records": [
                {"rollNo": "A1", "status": "Present", "date": "2024-05-06"},
                {"rollNo": "NOPE", "status": "Present", "date": "2024-05-06"},
            ],
        })
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json["saved"], 1)
        self.assertEqual(response.json["skipped"], 1)

    def test_override(self):
        self.recognize(0.1, timestamp="2024-05-06T09:30:00", session=SESSION)
        response = self.client.post("/api/attendance/override", headers=self.teacher, json={
            "rollNo": "A1", "present": True, "date": "2024-05-06",
        })
        self.assertEqual(response.json["record"]["confidence"], "Manual")
        self.assertEqual(response.json["record"]["status"], "Present")

        response = self.client.post("/api/attendance/override", headers=self.teacher, json={
            "studentId": self.asha["id"], "present": False, "date": "2024-05-06",
        })
        self.assertIsNone(response.json["record"])
        self.assertEqual(self.store.count_attendance(), 0)

    def test_override_needs_a_student(self):
        response = self.client.post("/api/attendance/override", headers=self.teacher, json={"present": True})
        self.assertEqual(response.status_code, 400)

    def test_summary_with_notifications(self):
        session = self.start_session()
        self.recognize(0.1, sessionId=session["id"])

        response = self.client.post(
            "/api/attendance/summary", json={"sessionId": session["id"], "notify": True}, headers=self.teacher
        )
        self.assertEqual(response.json["date"], "2024-05-06")
        self.assertEqual(response.json["present"], ["Asha Rao (A1)"])
        self.assertEqual(response.json["late"], [])
        self.assertEqual(response.json["absent"], ["Bilal Khan (A2)"])

        notices = self.notifications.dispatch.call_args[0][0]
        self.assertEqual([n["rollNo"] for n in notices], ["A2"])
        self.assertEqual(notices[0]["contact"]["phone"], "9876543210")

    def test_summary_without_notify(self):
        self.client.post("/api/attendance/summary", json={"date": "2024-05-06"}, headers=self.teacher)
        self.notifications.dispatch.assert_not_called()

    def test_report_is_scoped_to_teacher_class(self):
        self.register("B1", "Chen", class_name="CS102")
        self.client.post("/api/attendance/mark", headers=self.admin, json={"records": [
            {"rollNo": "A1", "status": "Present", "date": "2024-05-06"},
            {"rollNo": "B1", "status": "Present", "date": "2024-05-06"},
        ]})
        teacher_rows = self.client.get("/api/attendance/report", headers=self.teacher).json
        admin_rows = self.client.get("/api/attendance/report", headers=self.admin).json
        self.assertEqual([r["student"]["rollNo"] for r in teacher_rows], ["A1"])
        self.assertEqual(len(admin_rows), 2)

    def test_period_report(self):
        response = self.client.get("/api/attendance/report/period?period=weekly", headers=self.teacher)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json["period"], "weekly")
        self.assertEqual({s["rollNo"] for s in response.json["students"]}, {"A1", "A2"})

    def test_period_report_rejects_unknown_period(self):
        response = self.client.get("/api/attendance/report/period?period=yearly", headers=self.teacher)
        self.assertEqual(response.status_code, 422)

    def test_stats(self):
        self.client.post("/api/attendance/mark", headers=self.admin, json={"records": [
            {"rollNo": "A1", "status": "Present", "date": "2024-05-06"},
            {"rollNo": "A2", "status": "Absent", "date": "2024-05-06"},
        ]})
        stats = self.client.get("/api/admin/stats", headers=self.admin).json
        self.assertEqual(stats["totalStudents"], 2)
        self.assertEqual(stats["attendanceRate"], 50.0)
        self.assertEqual(stats["recentAbsentees"][0]["student"]["rollNo"], "A2")

    def test_csv_export(self):
        response = self.client.get("/api/attendance/export/csv", headers=self.admin)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json["message"], "No attendance data")

        self.client.post("/api/attendance/mark", headers=self.admin, json={"records": [
            {"rollNo": "A1", "status": "Present", "date": "2024-05-06"},
        ]})
        response = self.client.get("/api/attendance/export/csv", headers=self.admin)
        self.assertEqual(response.mimetype, "text/csv")
        self.assertEqual(
            response.data.decode().splitlines(),
            ["date,studentName,rollNo,className,status", '"2024-05-06","Asha Rao","A1","CS101","Present"'],
        )

    def test_pdf_export(self):
        response = self.client.get("/api/attendance/export/pdf", headers=self.admin)
        self.assertEqual(response.mimetype, "application/pdf")
        self.assertTrue(response.data.startswith(b"%PDF"))

    def test_send_email_route(self):
        self.notifications.send_email.return_value = {"successful": 1, "failed": []}
        response = self.client.post("/api/notifications/send-email", headers=self.teacher, json={
            "students": [{"fullName": "Asha Rao", "rollNo": "A1", "parentEmail": "asha.parent@mail.com"}],
            "status": "Absent",
            "className": "CS101",
            "date": "2024-05-06",
        })
        self.assertEqual(response.json["details"]["successful"], 1)
        notices = self.notifications.send_email.call_args[0][0]
        self.assertEqual(notices[0]["contact"]["email"], "asha.parent@mail.com")

    def test_send_sms_route(self):
        self.notifications.send_sms.return_value = {
            "successful": 0, "failed": [{"student": "Asha Rao (A1)", "error": "Invalid phone number"}],
        }
        response = self.client.post("/api/notifications/send-sms", headers=self.teacher, json={
            "students": [{"fullName": "Asha Rao", "rollNo": "A1", "parentNumber": "123"}],
            "status": "Late",
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json["details"]["failed"]), 1)


class TestSyncRoute(RouteTestCase):
    def test_sync_round_trip(self):
        response = self.client.post("/sync", headers=self.teacher, json={
            "changes": [
                {"collection": "students", "op": "upsert", "key": {"roll_number": "A1"},
                 "data": {"full_name": "Asha", "class_name": "CS101"}},
                {"collection": "attendance", "op": "upsert", "key": {"roll_number": "GHOST", "date": "2024-05-06"},
                 "data": {"status": "Present"}},
            ],
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json["applied"], 1)
        self.assertEqual(response.json["skipped"], 1)
        self.assertEqual(response.json["changes"]["students"][0]["roll_number"], "A1")

        marker = response.json["marker"]
        response = self.client.post("/sync", headers=self.teacher, json={"changes": [], "lastSyncMarker": marker})
        self.assertEqual(response.json["changes"]["students"], [])

    def test_bad_marker(self):
        response = self.client.post("/sync", headers=self.teacher, json={"lastSyncMarker": "soon"})
        self.assertEqual(response.status_code, 400)


if __name__ == "__main__":
    unittest.main()
