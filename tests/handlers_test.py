from __future__ import annotations

import asyncio
import unittest

from content_flow.content_services import TemplateContentServices
from content_flow.graph.expressions import ExpressionError, evaluate_condition, normalise_expression
from content_flow.graph.handlers import (
    HandlerContext,
    NodeExecutionError,
    check_content_length,
    check_image_exists,
    check_platform_selected,
    describe_audience,
    evaluate_custom_condition,
    execute_conditional_node,
    execute_draft_node,
    execute_platform_node,
    execute_preview_node,
    format_content_for_platform,
    generate_hashtags_from_content,
    handler_for,
    validate_platform_content,
)


def _entry(node_id: str, node_type: str, data: dict) -> dict:
    return {"nodeId": node_id, "nodeType": node_type, "data": data, "transformed": data}


def _context(node_type: str, data: dict, inputs: dict | None = None) -> HandlerContext:
    return HandlerContext(
        node_id=f"{node_type}-1",
        node_type=node_type,
        data=data,
        inputs=inputs or {},
        services=TemplateContentServices(),
    )


class ExpressionTests(unittest.TestCase):
    def test_javascript_operators_are_normalised(self) -> None:
        values = {"draft": "x" * 20, "image": None, "platform": "twitter", "hashtags": ["kayak"]}
        self.assertTrue(evaluate_condition("draft.length > 10 && hashtags.includes('kayak')", values))
        self.assertTrue(evaluate_condition("platform === 'twitter' || image !== null", values))
        self.assertTrue(evaluate_condition("!image", values))
        self.assertFalse(evaluate_condition("platform.startsWith('insta')", values))

    def test_string_literals_are_left_alone(self) -> None:
        self.assertEqual(normalise_expression("draft === 'a && !b'"), "draft == 'a && !b'")
        self.assertTrue(evaluate_condition("draft === 'a && !b'", {"draft": "a && !b"}))

    def test_unsafe_expressions_are_refused(self) -> None:
        for source in (
            "__import__('os').system('ls')",
            "draft.__class__",
            "draft.format('x')",
            "(lambda: 1)()",
            "open('/etc/passwd')",
            "[x for x in hashtags]",
        ):
            with self.subTest(source=source):
                with self.assertRaises(ExpressionError):
                    evaluate_condition(source, {"draft": "", "hashtags": []})

    def test_runtime_errors_become_expression_errors(self) -> None:
        with self.assertRaises(ExpressionError):
            evaluate_condition("draft.length > 3", {"draft": None})
        with self.assertRaises(ExpressionError):
            evaluate_condition("", {})


class ConditionCheckTests(unittest.TestCase):
    def test_image_check_depends_on_source_type(self) -> None:
        self.assertTrue(check_image_exists([_entry("m", "mediaNode", {"selectedImage": {"id": "1"}})]))
        self.assertFalse(check_image_exists([_entry("m", "mediaNode", {"media": ["ignored"]})]))
        self.assertTrue(check_image_exists([_entry("p", "platformNode", {"media": {"id": "1"}})]))

    def test_content_length_counts_words(self) -> None:
        entry = _entry("d", "draftNode", {"draft": "one two three four"})
        self.assertTrue(check_content_length([entry], 4))
        self.assertFalse(check_content_length([entry], 5))

    def test_checks_see_through_conditional_passthrough(self) -> None:
        entry = _entry("c", "conditionalNode", {"result": True, "passthrough": {"platform": "tiktok"}})
        self.assertTrue(check_platform_selected([entry]))

    def test_invalid_custom_condition_is_false_and_logged(self) -> None:
        entry = _entry("d", "draftNode", {"draft": "hello"})
        with self.assertLogs("content_flow.graph.handlers", level="WARNING") as logs:
            self.assertFalse(evaluate_custom_condition([entry], "draft.__len__()", node_id="cond-1"))
        self.assertIn("cond-1", logs.output[0])
        self.assertTrue(evaluate_custom_condition([entry], "draft === 'hello'"))
        self.assertFalse(evaluate_custom_condition([entry], None))


class ContentHelperTests(unittest.TestCase):
    def test_hashtags_ranked_by_frequency(self) -> None:
        tags = generate_hashtags_from_content("Kayaks, kayaks! Paddle paddle paddle on the river.")
        self.assertEqual(tags, ["paddle", "kayaks", "river"])
        self.assertEqual(generate_hashtags_from_content("one two six"), [])

    def test_twitter_formatting_truncates(self) -> None:
        formatted = format_content_for_platform("a" * 300, "twitter", ["kayaks"])
        self.assertEqual(len(formatted), 280)
        self.assertTrue(formatted.endswith("..."))
        self.assertEqual(format_content_for_platform("Short", "twitter", ["kayaks"]), "Short\n#kayaks")

    def test_linkedin_keeps_three_hashtags(self) -> None:
        formatted = format_content_for_platform("Post", "linkedin", ["a1", "b2", "c3", "d4"])
        self.assertEqual(formatted, "Post\n\n#a1 #b2 #c3")

    def test_platform_warnings(self) -> None:
        warnings = validate_platform_content({"platform": "instagram", "draft": "", "hashtags": []})
        self.assertEqual(warnings, ["Content text is empty", "Instagram posts typically require an image"])
        self.assertEqual(validate_platform_content({"platform": "facebook", "draft": "Hi"}), [])

    def test_describe_audience(self) -> None:
        self.assertEqual(
            describe_audience({"ageRange": [18, 34], "interests": ["outdoors", "travel"]}),
            "\nTarget audience: Age 18-34 Interests: outdoors, travel",
        )
        self.assertEqual(describe_audience({"ageRange": {"min": 25, "max": 40}}), "\nTarget audience: Age 25-40")
        self.assertEqual(describe_audience({}), "")


class HandlerTests(unittest.TestCase):
    def test_unknown_type_uses_passthrough(self) -> None:
        context = _context("mysteryNode", {"keep": 1})
        result = asyncio.run(handler_for("mysteryNode")(context))
        self.assertEqual(result.data, {"keep": 1})

    def test_draft_folds_audience_into_prompt(self) -> None:
        services = TemplateContentServices()
        context = HandlerContext(
            node_id="draft-1",
            node_type="draftNode",
            data={"prompt": "Kayak safety"},
            inputs={"audience": [_entry("aud-1", "audienceNode", {"ageRange": [18, 34], "interests": ["outdoors"]})]},
            services=services,
        )
        result = asyncio.run(execute_draft_node(context))
        self.assertEqual(services.calls[0].argument, "Kayak safety\n\nTarget audience: Age 18-34 Interests: outdoors")
        self.assertTrue(result.data["hasGenerated"])
        self.assertIn("audienceContext", result.data)

    def test_draft_service_failure_raises_node_error(self) -> None:
        class _Broken(TemplateContentServices):
            async def generate_draft(self, prompt: str) -> str:
                raise RuntimeError("down")

        context = HandlerContext(
            node_id="draft-1",
            node_type="draftNode",
            data={"prompt": "Kayak safety"},
            inputs={},
            services=_Broken(),
        )
        with self.assertRaises(NodeExecutionError) as ctx:
            asyncio.run(execute_draft_node(context))
        self.assertEqual(str(ctx.exception), "Failed to generate draft from API")

    def test_platform_merges_inputs_and_preview_validates(self) -> None:
        inputs = {
            "draft": [_entry("draft-1", "draftNode", {"draft": "Morning paddle", "prompt": "paddle"})],
            "hashtags": [
                _entry("hashtag-1", "hashtagNode", {"hashtags": ["kayaks", "river"]}),
                _entry("hashtag-2", "hashtagNode", {"hashtags": ["river", "dawn"]}),
            ],
        }
        platform = asyncio.run(execute_platform_node(_context("platformNode", {"platform": "instagram"}, inputs)))
        self.assertTrue(platform.data["isReady"])
        self.assertEqual(platform.data["platformContent"]["hashtags"], ["kayaks", "river", "dawn"])
        self.assertEqual(platform.data["formattedContent"], "Morning paddle\n\n#kayaks #river #dawn")

        preview_inputs = {"content": [_entry("platform-1", "platformNode", platform.data)]}
        preview = asyncio.run(execute_preview_node(_context("previewNode", {}, preview_inputs)))
        self.assertEqual(preview.data["approvalStatus"], "pending")
        self.assertEqual(preview.data["content"]["warnings"], ["Instagram posts typically require an image"])

    def test_conditional_without_condition_is_false(self) -> None:
        inputs = {"input": [_entry("draft-1", "draftNode", {"draft": "text"})]}
        result = asyncio.run(execute_conditional_node(_context("conditionalNode", {"condition": ""}, inputs)))
        self.assertFalse(result.data["result"])
        self.assertEqual(result.data["passthrough"], {"draft": "text"})

    def test_conditional_content_length_threshold(self) -> None:
        inputs = {"input": [_entry("draft-1", "draftNode", {"draft": "one two three"})]}
        data = {"condition": "contentLength", "conditionValue": 3}
        result = asyncio.run(execute_conditional_node(_context("conditionalNode", data, inputs)))
        self.assertTrue(result.data["result"])


if __name__ == "__main__":
    unittest.main()
