# ABOUTME: Tests the on-disk formats for skill assignments and run summaries.
# ABOUTME: Ensures one space-separated vector per line and readable JSON summaries.

import json
import tempfile
import unittest
from pathlib import Path

from src.common.schemas import SkillRunSummary
from src.skill_discovery.export import read_skill_assignments, write_run_summary, write_skill_assignments


class SkillExportTest(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self.tmpdir.name)

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def test_writes_one_vector_per_line(self) -> None:
        path = self.root / "out" / "skills.txt"
        write_skill_assignments([[0, 0, 1], [0, 1, 2]], path)
        self.assertEqual("0 0 1\n0 1 2\n", path.read_text(encoding="utf-8"))
        self.assertEqual([[0, 0, 1], [0, 1, 2]], read_skill_assignments(path))

    def test_rejects_empty_or_ragged_assignments(self) -> None:
        with self.assertRaises(ValueError):
            write_skill_assignments([], self.root / "empty.txt")
        with self.assertRaises(ValueError):
            write_skill_assignments([[0, 1], [0]], self.root / "ragged.txt")

    def test_run_summary_is_json(self) -> None:
        summary = SkillRunSummary(
            seed=3,
            num_iterations=20,
            burn=10,
            num_samples=10,
            map_iteration=14,
            map_log_joint=-52.5,
            map_num_skills=2,
            final_alpha_prime=0.8,
            final_beta=0.4,
            alpha_prime_fixed=False,
            beta_fixed=True,
            evaluation={"adjusted_rand": 1.0},
        )
        path = self.root / "summary.json"
        write_run_summary(summary, path)
        payload = json.loads(path.read_text(encoding="utf-8"))
        self.assertEqual(14, payload["map_iteration"])
        self.assertEqual({"adjusted_rand": 1.0}, payload["evaluation"])
        self.assertIsNone(payload["datafile"])


if __name__ == "__main__":
    unittest.main()
