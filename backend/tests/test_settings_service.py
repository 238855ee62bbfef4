import unittest

from retailpos import create_app
from retailpos.extensions import db
from retailpos.models import AppSettings
from retailpos.services import settings_service
from retailpos.validation import ValidationError


class SettingsServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "SQLALCHEMY_BINDS": {"offline": "sqlite:///:memory:"},
            "INVOICE_PREFIX": "INV",
            "INVOICE_SEQUENCE_PAD": 6,
        })
        cls.ctx = cls.app.app_context()
        cls.ctx.push()
        db.create_all()

    @classmethod
    def tearDownClass(cls):
        db.session.remove()
        db.drop_all()
        cls.ctx.pop()

    def setUp(self):
        db.session.query(AppSettings).delete()
        db.session.commit()

    def test_singleton_created_on_first_use(self):
        settings = settings_service.get_settings()
        db.session.commit()
        self.assertEqual(settings.id, AppSettings.SINGLETON_ID)
        self.assertEqual(settings.invoice_prefix, "INV")
        self.assertEqual(settings.next_invoice_sequence, 1)
        self.assertIs(settings_service.get_settings(), settings)
        self.assertEqual(db.session.query(AppSettings).count(), 1)

    def test_allocate_increments_counter(self):
        settings = settings_service.get_settings()
        self.assertEqual(settings_service.allocate_invoice_number(settings), "INV-000001")
        self.assertEqual(settings_service.allocate_invoice_number(settings), "INV-000002")
        self.assertEqual(settings.next_invoice_sequence, 3)
        db.session.rollback()

    def test_format_pads_and_overflows(self):
        self.assertEqual(settings_service.format_invoice_number("LS", 42), "LS-000042")
        self.assertEqual(settings_service.format_invoice_number("LS", 1234567), "LS-1234567")

    def test_update_settings(self):
        settings = settings_service.update_settings({
            "business_name": "Little Steps",
            "currency": "inr",
            "invoice_prefix": "LS",
            "next_invoice_sequence": 100,
        })
        self.assertEqual(settings.business_name, "Little Steps")
        self.assertEqual(settings.currency, "INR")
        self.assertEqual(
            settings_service.allocate_invoice_number(settings),
            "LS-000100",
        )
        db.session.rollback()

    def test_counter_cannot_move_backwards(self):
        settings_service.update_settings({"next_invoice_sequence": 10})
        with self.assertRaises(ValidationError):
            settings_service.update_settings({"next_invoice_sequence": 5})
        db.session.rollback()

    def test_prefix_validation(self):
        for prefix in ("", "INV-X"):
            with self.assertRaises(ValidationError):
                settings_service.update_settings({"invoice_prefix": prefix})
            db.session.rollback()


if __name__ == "__main__":
    unittest.main()
