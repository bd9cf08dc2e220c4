import random
import unittest

from specmap.models import MappingEntry, RelatedFile
from specmap.services.change_detector import diff, diff_entry, summarize_changes


def _entry(object_id: str, impl: list[str], status: str = "implemented", tests: list[str] | None = None) -> MappingEntry:
    return MappingEntry(
        objectId=object_id,
        objectTitle=f"Feature {object_id}",
        status=status,
        implFiles=[RelatedFile(filePath=path, type="impl") for path in impl],
        testFiles=[RelatedFile(filePath=path, type="test") for path in tests or []],
    )


def _random_snapshot(rng: random.Random) -> list[MappingEntry]:
    files = [f"src/file_{i}.ts" for i in range(8)]
    statuses = ["implemented", "partial", "not_found", "unknown"]
    ids = rng.sample([f"F{i}" for i in range(12)], rng.randint(0, 10))
    return [_entry(object_id, rng.sample(files, rng.randint(0, 4)), rng.choice(statuses)) for object_id in ids]


class ChangeDetectorTests(unittest.TestCase):
    def test_added_file_marks_entry_changed(self) -> None:
        previous = [_entry("F1", ["a.ts"])]
        current = [_entry("F1", ["a.ts", "b.ts"])]
        rows = diff(previous, current)
        self.assertEqual(len(rows), 1)
        row = rows[0]
        self.assertEqual(row.objectId, "F1")
        self.assertEqual(row.changeType, "changed")
        self.assertEqual([f.filePath for f in row.addedFiles], ["b.ts"])
        self.assertEqual(row.removedFiles, [])
        self.assertEqual(row.changeSummary, "files changed")

    def test_object_missing_from_current_is_removed(self) -> None:
        previous = [_entry("F1", ["a.ts"]), _entry("F2", ["c.ts"], status="partial")]
        current = [_entry("F1", ["a.ts"])]
        rows = {row.objectId: row for row in diff(previous, current)}
        self.assertEqual(rows["F2"].changeType, "removed")
        self.assertEqual([f.filePath for f in rows["F2"].removedFiles], ["c.ts"])
        self.assertEqual(rows["F2"].previousStatus, "partial")
        self.assertIsNone(rows["F2"].currentStatus)
        self.assertEqual(rows["F1"].changeType, "unchanged")

    def test_new_object_is_added(self) -> None:
        row = diff([], [_entry("F9", ["x.ts"], tests=["x.test.ts"])])[0]
        self.assertEqual(row.changeType, "added")
        self.assertEqual([f.filePath for f in row.addedFiles], ["x.ts", "x.test.ts"])
        self.assertEqual(row.currentStatus, "implemented")

    def test_status_change_alone_is_changed(self) -> None:
        row = diff_entry(_entry("F1", ["a.ts"], status="partial"), _entry("F1", ["a.ts"]))
        self.assertEqual(row.changeType, "changed")
        self.assertEqual(row.changeSummary, "partial -> implemented")
        self.assertEqual(row.addedFiles, [])
        self.assertEqual(row.removedFiles, [])

    def test_line_range_drift_is_not_a_change(self) -> None:
        before = MappingEntry(
            objectId="F1",
            objectTitle="Feature F1",
            implFiles=[RelatedFile(filePath="a.ts", lineRange={"start": 1, "end": 5}, description="old")],
        )
        after = MappingEntry(
            objectId="F1",
            objectTitle="Feature F1",
            implFiles=[RelatedFile(filePath="a.ts", lineRange={"start": 10, "end": 50}, description="new")],
        )
        self.assertEqual(diff_entry(before, after).changeType, "unchanged")

    def test_rows_follow_current_then_removed_order(self) -> None:
        previous = [_entry("R1", []), _entry("F2", []), _entry("R2", [])]
        current = [_entry("F3", []), _entry("F2", [])]
        self.assertEqual([row.objectId for row in diff(previous, current)], ["F3", "F2", "R1", "R2"])

    def test_diff_of_identical_snapshots_is_all_unchanged(self) -> None:
        rng = random.Random(42)
        for _ in range(50):
            snapshot = _random_snapshot(rng)
            rows = diff(snapshot, snapshot)
            self.assertEqual(len(rows), len(snapshot))
            self.assertTrue(all(row.changeType == "unchanged" for row in rows))
            self.assertTrue(all(not row.addedFiles and not row.removedFiles for row in rows))

    def test_every_object_gets_exactly_one_row(self) -> None:
        rng = random.Random(7)
        for _ in range(50):
            previous = _random_snapshot(rng)
            current = _random_snapshot(rng)
            rows = diff(previous, current)
            ids = [row.objectId for row in rows]
            expected = {e.objectId for e in previous} | {e.objectId for e in current}
            self.assertEqual(len(ids), len(set(ids)))
            self.assertEqual(set(ids), expected)
            current_ids = {e.objectId for e in current}
            previous_ids = {e.objectId for e in previous}
            for row in rows:
                if row.changeType == "added":
                    self.assertNotIn(row.objectId, previous_ids)
                elif row.changeType == "removed":
                    self.assertNotIn(row.objectId, current_ids)
                else:
                    self.assertIn(row.objectId, previous_ids & current_ids)

    def test_summarize_changes(self) -> None:
        rows = diff([_entry("F1", ["a.ts"]), _entry("F2", [])], [_entry("F1", ["b.ts"]), _entry("F3", [])])
        self.assertEqual(summarize_changes(rows), {"added": 1, "changed": 1, "removed": 1, "unchanged": 0})

    def test_diff_entry_needs_one_side(self) -> None:
        with self.assertRaises(ValueError):
            diff_entry(None, None)


if __name__ == "__main__":
    unittest.main()
