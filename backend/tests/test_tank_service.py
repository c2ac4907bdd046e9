import unittest
from decimal import Decimal

from co2ledger import create_app
from co2ledger.errors import InsufficientInventoryError, NotFoundError, OverCapacityError, ValidationError
from co2ledger.extensions import db
from co2ledger.models import Co2Tank, TankMovement
from co2ledger.services import reversal_service, tank_service


class TankLedgerTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = create_app({
            "SECRET_KEY": "test",
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "SQLALCHEMY_TRACK_MODIFICATIONS": False,
            "TESTING": True,
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
        db.session.query(TankMovement).delete()
        db.session.query(Co2Tank).delete()
        db.session.commit()

    def _tank(self, level, capacity=1000):
        return tank_service.create_tank(capacity=capacity, current_level=level, minimum_threshold=20)

    def _level(self) -> Decimal:
        db.session.expire_all()
        return Decimal(tank_service.get_tank().current_level)

    def test_scenario_a_entrance_adds_quantity_and_shrinkage(self):
        self._tank(500)

        movement = tank_service.record_entrance(100, "op", supplier="Linde")

        self.assertEqual(movement.shrinkage_amount, Decimal("3.000"))
        self.assertEqual(movement.level_before, Decimal("500.000"))
        self.assertEqual(movement.level_after, Decimal("603.000"))
        self.assertEqual(self._level(), Decimal("603.000"))
        self.assertIsNotNone(tank_service.get_tank().last_refill_at)

    def test_scenario_b_exit_beyond_level_is_rejected(self):
        self._tank(50)

        with self.assertRaises(InsufficientInventoryError):
            tank_service.record_exit(50, "op")

        self.assertEqual(self._level(), Decimal("50.000"))
        self.assertEqual(db.session.query(TankMovement).count(), 0)

    def test_exit_within_level(self):
        self._tank(500)

        tank_service.record_exit(100, "op")

        self.assertEqual(self._level(), Decimal("397.000"))

    def test_entrance_over_capacity_is_rejected_not_clamped(self):
        self._tank(950)

        with self.assertRaises(OverCapacityError):
            tank_service.record_entrance(50, "op")

        self.assertEqual(self._level(), Decimal("950.000"))

    def test_non_positive_quantity(self):
        self._tank(500)
        for bad in (0, -5, "x"):
            with self.assertRaises(ValidationError):
                tank_service.record_entrance(bad, "op")
            with self.assertRaises(ValidationError):
                tank_service.record_exit(bad, "op")

    def test_missing_tank(self):
        with self.assertRaises(NotFoundError):
            tank_service.record_entrance(10, "op")

    def test_non_finite_tank_settings_rejected(self):
        for level, threshold in (("NaN", 20), (0, "Infinity"), ("abc", 20)):
            with self.assertRaises(ValidationError):
                tank_service.create_tank(capacity=1000, current_level=level, minimum_threshold=threshold)
        self.assertEqual(db.session.query(Co2Tank).count(), 0)

    def test_sub_gram_quantity_rejected(self):
        self._tank(500)
        with self.assertRaises(ValidationError):
            tank_service.record_entrance("0.0004", "op")
        self.assertEqual(self._level(), Decimal("500.000"))

    def test_second_tank_rejected(self):
        self._tank(0)
        with self.assertRaises(ValidationError):
            self._tank(0)

    def test_current_level_tiers(self):
        self._tank(40)
        self.assertEqual(tank_service.current_level()["status"], "critical")

        tank_service.record_entrance(100, "op")  # 143 kg, 14.3%
        status = tank_service.current_level()
        self.assertEqual(status["status"], "low")
        self.assertAlmostEqual(status["percentage"], 14.3)

        tank_service.record_entrance(200, "op")  # 349 kg
        self.assertEqual(tank_service.current_level()["status"], "normal")

    def test_reversal_guards_keep_level_in_bounds(self):
        self._tank(0, capacity=200)
        entrance = tank_service.record_entrance(100, "op")  # 103
        tank_service.record_exit(90, "op")  # 103 - 92.7 = 10.3

        with self.assertRaises(InsufficientInventoryError):
            reversal_service.reverse_tank_movement(entrance.id, reversed_by="supervisor")
        self.assertEqual(self._level(), Decimal("10.300"))

    def test_exit_reversal_over_capacity(self):
        self._tank(100, capacity=110)
        exit_row = tank_service.record_exit(50, "op")  # 48.5
        tank_service.record_entrance(50, "op")  # 100

        with self.assertRaises(OverCapacityError):
            reversal_service.reverse_tank_movement(exit_row.id, reversed_by="supervisor")
        self.assertEqual(self._level(), Decimal("100.000"))

    def test_level_stays_in_bounds_over_a_sequence(self):
        self._tank(100, capacity=500)
        operations = [
            lambda: tank_service.record_entrance(200, "op"),
            lambda: tank_service.record_exit(400, "op"),
            lambda: tank_service.record_exit(150, "op"),
            lambda: tank_service.record_entrance(300, "op"),
            lambda: tank_service.record_entrance(20, "op"),
            lambda: tank_service.record_exit(5, "op"),
        ]
        for op in operations:
            try:
                op()
            except (InsufficientInventoryError, OverCapacityError):
                pass
            level = self._level()
            self.assertGreaterEqual(level, Decimal("0"))
            self.assertLessEqual(level, Decimal("500"))

    def test_recompute_reports_and_fixes_drift(self):
        self._tank(0)
        tank_service.record_entrance(100, "op")
        tank_service.record_exit(10, "op")

        report = tank_service.recompute_level()
        self.assertEqual(report["computed_level"], 92.7)
        self.assertEqual(report["drift"], 0.0)

        tank = tank_service.get_tank()
        tank.current_level = Decimal("90.000")
        db.session.commit()

        report = tank_service.recompute_level(apply=True)
        self.assertTrue(report["applied"])
        self.assertEqual(self._level(), Decimal("92.700"))


if __name__ == "__main__":
    unittest.main()
