import unittest

from specmap.models import RelatedFile
from specmap.parsers.file_classifier import classify, classify_path, split_files


class FileClassifierTests(unittest.TestCase):
    def test_test_and_spec_filenames_are_tests(self) -> None:
        self.assertEqual(classify_path("src/auth/login.test.ts"), "test")
        self.assertEqual(classify_path("src/auth/Login.Spec.tsx"), "test")
        self.assertEqual(classify_path("cart.spec.js"), "test")

    def test_test_directories_are_tests(self) -> None:
        self.assertEqual(classify_path("src/__tests__/cart.ts"), "test")
        self.assertEqual(classify_path("test/helpers.py"), "test")
        self.assertEqual(classify_path("pkg/Test/fixtures.json"), "test")
        self.assertEqual(classify_path("src\\__tests__\\cart.ts"), "test")

    def test_everything_else_is_impl(self) -> None:
        self.assertEqual(classify_path("src/contest.ts"), "impl")
        self.assertEqual(classify_path("src/testing/harness.ts"), "impl")
        self.assertEqual(classify_path("src/latest.ts"), "impl")
        self.assertEqual(classify_path(""), "impl")

    def test_explicit_type_wins(self) -> None:
        self.assertEqual(classify(RelatedFile(filePath="src/login.test.ts", type="impl")), "impl")
        self.assertEqual(classify(RelatedFile(filePath="src/login.ts", type="test")), "test")
        self.assertEqual(classify(RelatedFile(filePath="src/login.test.ts")), "test")

    def test_classification_is_deterministic(self) -> None:
        paths = ["a.test.ts", "src/a.ts", "__tests__/b.ts", "lib/c.spec.py", "docs/readme.md"]
        first = [classify_path(path) for path in paths]
        second = [classify_path(path) for path in reversed(paths)]
        self.assertEqual(first, list(reversed(second)))

    def test_split_files_partitions_and_dedupes(self) -> None:
        impl, tests = split_files(
            [
                RelatedFile(filePath="src/cart.ts"),
                RelatedFile(filePath="src/cart.test.ts"),
                RelatedFile(filePath="src/cart.ts", description="duplicate"),
                RelatedFile(filePath="src/checkout.ts", type="test"),
            ]
        )
        self.assertEqual([f.filePath for f in impl], ["src/cart.ts"])
        self.assertEqual([f.filePath for f in tests], ["src/cart.test.ts", "src/checkout.ts"])
        self.assertTrue(all(f.type == "impl" for f in impl))
        self.assertTrue(all(f.type == "test" for f in tests))
        self.assertIsNone(impl[0].description)

        impl_paths = {f.filePath for f in impl}
        test_paths = {f.filePath for f in tests}
        self.assertFalse(impl_paths & test_paths)


if __name__ == "__main__":
    unittest.main()
