import unittest

from specmap.models import FeatureNode
from specmap.services.prompt_builder import build_context, build_system_prompt, build_user_prompt
from specmap.services.tree_walker import FeatureTree


def _tree() -> FeatureTree:
    return FeatureTree.from_forest(
        [
            FeatureNode(
                id="A",
                title="Accounts",
                children=[
                    FeatureNode(id="B", title="Billing", children=[FeatureNode(id="D", title="Invoices")]),
                    FeatureNode(id="C", title="Contacts"),
                ],
            ),
            FeatureNode(id="E", title="Exports"),
        ]
    )


class PromptBuilderTests(unittest.TestCase):
    def test_context_keeps_walk_order_with_outline_numbers(self) -> None:
        context = build_context(_tree().walk())
        self.assertEqual(
            context.splitlines(),
            [
                "    1.1.1 Invoices  (id: D)",
                "  1.1 Billing  (id: B)",
                "  1.2 Contacts  (id: C)",
                "1 Accounts  (id: A)",
                "2 Exports  (id: E)",
            ],
        )

    def test_scoped_context_renumbers_from_the_scope_root(self) -> None:
        context = build_context(_tree().walk("B"))
        self.assertEqual(context.splitlines(), ["  1.1 Invoices  (id: D)", "1 Billing  (id: B)"])

    def test_titles_are_collapsed_to_one_line(self) -> None:
        context = build_context([FeatureNode(id="X", title="Multi\nline   title")])
        self.assertEqual(context, "1 Multi line title  (id: X)")

    def test_empty_context(self) -> None:
        self.assertEqual(build_context([]), "")

    def test_system_prompt_demands_json_array(self) -> None:
        prompt = build_system_prompt()
        self.assertIn("JSON array", prompt)
        for key in ("objectId", "objectTitle", "status", "summary", "relatedFiles", "filePath", "lineRange"):
            self.assertIn(key, prompt)

    def test_user_prompt_includes_context_and_source_tree(self) -> None:
        prompt = build_user_prompt("1 Accounts  (id: A)", directory_tree="repo/\n└── src/", workspace_path="/work/repo")
        self.assertIn("1 Accounts  (id: A)", prompt)
        self.assertIn("## Source Tree", prompt)
        self.assertIn("/work/repo", prompt)

        bare = build_user_prompt("1 Accounts  (id: A)")
        self.assertNotIn("## Source Tree", bare)


if __name__ == "__main__":
    unittest.main()
