import json
import tempfile
import unittest
from pathlib import Path

from specmap.object_tree import ObjectTreeStore


class ObjectTreeStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self.tmpdir.name)
        self.store = ObjectTreeStore(self.root)

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def _write(self, payload) -> None:
        self.store.path.parent.mkdir(parents=True, exist_ok=True)
        self.store.path.write_text(json.dumps(payload), encoding="utf-8")

    def test_missing_index_is_an_empty_tree(self) -> None:
        self.assertEqual(self.store.load_entries(), [])
        self.assertEqual(len(self.store.load_tree()), 0)

    def test_loads_hierarchy_from_parent_ids(self) -> None:
        self._write(
            {
                "specs": [
                    {"id": "s1", "parentId": None, "title": "Checkout", "completed": False},
                    {"id": "s2", "parentId": "s1", "title": "Cart"},
                    {"id": "s3", "parentId": "s1", "title": "Payment", "isState": True},
                ]
            }
        )
        tree = self.store.load_tree()
        self.assertEqual([node.id for node in tree.walk()], ["s2", "s3", "s1"])
        self.assertEqual(tree.get("s3").title, "Payment")

    def test_invalid_rows_are_skipped(self) -> None:
        self._write({"specs": [{"id": "s1", "title": "Checkout"}, {"title": "no id"}]})
        with self.assertLogs("specmap.objects", level="ERROR"):
            entries = self.store.load_entries()
        self.assertEqual([entry.id for entry in entries], ["s1"])

    def test_unreadable_index_is_logged(self) -> None:
        self.store.path.parent.mkdir(parents=True, exist_ok=True)
        self.store.path.write_text("{", encoding="utf-8")
        with self.assertLogs("specmap.objects", level="ERROR"):
            self.assertEqual(self.store.load_entries(), [])


if __name__ == "__main__":
    unittest.main()
