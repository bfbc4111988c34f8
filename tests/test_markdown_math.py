import os
import sys
import unittest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from backend.markdown_math import (
    MarkdownMathRenderer,
    mask_math,
    render_markdown,
    sanitize,
    unmask_math,
)


class TestSanitize(unittest.TestCase):
    def test_empty_input(self):
        self.assertEqual(sanitize(None), "")
        self.assertEqual(sanitize(""), "")

    def test_latex_fence_is_unwrapped_to_display_math(self):
        out = sanitize("```latex\nx^2=4\n```")
        self.assertEqual(out, "$$x^2=4$$")
        self.assertNotIn("`", out)

    def test_math_fence_tag_is_case_insensitive(self):
        self.assertEqual(sanitize("```MATH\n\\alpha + \\beta\n```"), "$$\\alpha + \\beta$$")

    def test_untagged_fence_without_math_stays_code(self):
        text = "```\nfoo()\n```"
        self.assertEqual(sanitize(text), text)

    def test_untagged_fence_with_equals_becomes_math(self):
        self.assertEqual(sanitize("```\na = b\n```"), "$$a = b$$")

    def test_untagged_fence_with_backslash_becomes_math(self):
        self.assertEqual(sanitize("```\n\\frac{1}{2}\n```"), "$$\\frac{1}{2}$$")

    def test_single_line_untagged_fence(self):
        self.assertEqual(sanitize("so ```x=1``` holds"), "so $$x=1$$ holds")

    def test_single_line_fence_with_spaces_is_untagged(self):
        self.assertEqual(sanitize("so ```a = b``` holds"), "so $$a = b$$ holds")

    def test_word_before_text_on_first_line_is_not_a_tag(self):
        self.assertEqual(sanitize("```a = b\n```"), "$$a = b$$")

    def test_other_language_fence_is_left_alone(self):
        text = "```python\nx = 1\nprint(x)\n```"
        self.assertEqual(sanitize(text), text)

    def test_delimiter_normalization(self):
        self.assertEqual(sanitize("\\[x+1\\]"), "$$x+1$$")
        self.assertEqual(sanitize("\\(y\\)"), "$y$")

    def test_normalization_does_not_balance(self):
        self.assertEqual(sanitize("open \\( only"), "open $ only")

    def test_latex_line_break_spacing_is_not_a_delimiter(self):
        text = "$$a \\\\[2pt] b$$"
        self.assertEqual(sanitize(text), text)

    def test_idempotent_on_canonical_input(self):
        text = "Let $x_n$ be a sequence.\n\n$$\\sum_{n=1}^{\\infty} x_n$$\n\n- item"
        once = sanitize(text)
        self.assertEqual(once, text)
        self.assertEqual(sanitize(once), once)

    def test_idempotent_after_fence_unwrap(self):
        once = sanitize("Solve:\n```\na = b\n```\nand \\(c\\)")
        self.assertEqual(sanitize(once), once)


class TestMasking(unittest.TestCase):
    def test_display_spans_masked_before_inline(self):
        masked = mask_math("$$a+b$$ then $c$")
        self.assertEqual(masked.display, ("$$a+b$$",))
        self.assertEqual(masked.inline, ("$c$",))
        self.assertNotIn("$", masked.text)

    def test_display_span_across_lines(self):
        masked = mask_math("before\n$$\na_1 +\nb_2\n$$\nafter")
        self.assertEqual(masked.display, ("$$\na_1 +\nb_2\n$$",))
        self.assertEqual(masked.inline, ())

    def test_token_balance(self):
        text = "$$A$$ and $b$, $c$ then $$D$$ and $e$"
        masked = mask_math(text)
        self.assertEqual(len(masked.display), 2)
        self.assertEqual(len(masked.inline), 3)
        for i in range(len(masked.display)):
            self.assertEqual(masked.text.count(masked.token("D", i)), 1)
        for i in range(len(masked.inline)):
            self.assertEqual(masked.text.count(masked.token("I", i)), 1)
        self.assertEqual(unmask_math(masked.text, masked), text)

    def test_token_balance_on_mixed_inputs(self):
        samples = [
            "no math at all",
            "$$\na\n$$ then $b$ and $c$",
            "- $x_1$\n- $$y*z$$\n\n> $w$",
            "price $5 and $$unclosed",
            "$a$$b$ and $$c$$$d$",
        ]
        for text in samples:
            masked = mask_math(text)
            found = masked.token_pattern.findall(masked.text)
            expected = [("D", str(i)) for i in range(len(masked.display))]
            expected += [("I", str(i)) for i in range(len(masked.inline))]
            self.assertEqual(sorted(found), sorted(expected))
            self.assertEqual(unmask_math(masked.text, masked), text)

    def test_tokens_avoid_markdown_characters(self):
        masked = mask_math("$x_1$ and $$y*z$$")
        for ch in "_*`":
            self.assertNotIn(ch, masked.text)

    def test_plain_text_creates_no_tokens(self):
        masked = mask_math("**bold** and _italic_")
        self.assertEqual(masked.display, ())
        self.assertEqual(masked.inline, ())
        self.assertEqual(masked.text, "**bold** and _italic_")

    def test_inline_math_does_not_span_lines(self):
        masked = mask_math("costs $5\nand $6")
        self.assertEqual(masked.inline, ())

    def test_each_call_uses_a_fresh_nonce(self):
        self.assertNotEqual(mask_math("$a$").nonce, mask_math("$a$").nonce)


class TestRender(unittest.TestCase):
    def test_no_cross_contamination(self):
        html = render_markdown("Regular *text* and $x_i * y_i$ formula")
        self.assertIn("<em>text</em>", html)
        self.assertIn("$x_i * y_i$", html)
        self.assertEqual(html.count("<em>"), 1)

    def test_plain_markdown(self):
        html = render_markdown("**bold**")
        self.assertIn("<strong>bold</strong>", html)
        self.assertNotIn("MATH", html)

    def test_fenced_math_renders_without_backticks(self):
        html = render_markdown("```latex\nx^2=4\n```")
        self.assertIn("$$x^2=4$$", html)
        self.assertNotIn("`", html)
        self.assertNotIn("<code>", html)

    def test_code_fence_stays_code(self):
        html = render_markdown("```\nfoo()\n```")
        self.assertIn("<code>foo()", html)

    def test_latex_backslashes_survive(self):
        html = render_markdown("$$a \\\\ b$$ and $\\{x\\}$")
        self.assertIn("$$a \\\\ b$$", html)
        self.assertIn("$\\{x\\}$", html)

    def test_bracket_delimiters_render_as_dollars(self):
        html = render_markdown("Area \\(\\pi r^2\\) and \\[E = mc^2\\]")
        self.assertIn("$\\pi r^2$", html)
        self.assertIn("$$E = mc^2$$", html)

    def test_headings_lists_quotes_and_breaks(self):
        html = render_markdown("# Limits\n\n- first $a_n$\n- second\n\n> note\n\nline one\nline two")
        self.assertIn("<h1>Limits</h1>", html)
        self.assertIn("<li>first $a_n$</li>", html)
        self.assertIn("<blockquote>", html)
        self.assertIn("line one<br", html)

    def test_raw_html_is_escaped(self):
        html = render_markdown("<script>alert(1)</script>")
        self.assertNotIn("<script>", html)
        self.assertIn("&lt;script&gt;", html)

    def test_math_markup_is_escaped(self):
        html = render_markdown("note $<img src=x onerror=alert(1)>$ and $$c>d \\& e$$")
        self.assertNotIn("<img", html)
        self.assertIn("$&lt;img src=x onerror=alert(1)&gt;$", html)
        self.assertIn("$$c&gt;d \\&amp; e$$", html)

    def test_less_than_in_math_does_not_open_a_tag(self):
        html = render_markdown("if $a<b$ then")
        self.assertIn("$a&lt;b$", html)
        self.assertNotIn("<b", html)

    def test_pipeline_is_idempotent_on_canonical_input(self):
        samples = [
            "Let $x_n$ be a sequence.\n\n$$\\sum_{n=1}^{\\infty} x_n$$",
            "# Heading\n\n- *one* $a * b$\n- two",
            "plain **bold** text",
            "```\nfoo()\n```",
        ]
        for s in samples:
            self.assertEqual(render_markdown(s), render_markdown(sanitize(s)))

    def test_malformed_delimiters_do_not_raise(self):
        html = render_markdown("price $5 and $$unclosed")
        self.assertIn("$5", html)
        self.assertIn("$$unclosed", html)

    def test_literal_token_lookalike_is_untouched(self):
        self.assertIn("MATHDABCN0E", render_markdown("MATHDABCN0E"))

    def test_empty_renders_empty(self):
        self.assertEqual(render_markdown(None), "")
        self.assertEqual(MarkdownMathRenderer().render("   "), "")


if __name__ == "__main__":
    unittest.main()
