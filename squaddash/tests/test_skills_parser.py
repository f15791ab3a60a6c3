import unittest

from squaddash.models import Skill
from squaddash.parsers.markdown import extract_frontmatter
from squaddash.parsers.skills import (
    build_skill_stub,
    deduplicate_skills,
    parse_awesome_readme,
    parse_installed_skill,
    parse_skills_sh_html,
)


AWESOME_README = """# Skills

| Name | Description | Bundled Assets |
| ---- | ----------- | -------------- |
| [Agentic Eval](../skills/agentic-eval/SKILL.md) | Evaluate agents<br />with rubrics | None |
| [X](../skills/x/SKILL.md) | Too short a name | None |
| [No Description](../skills/none/SKILL.md) |  | None |

- [Prompt Builder](https://github.com/example/prompts) - Builds prompts
"""

SKILLS_SH_HTML = """
<nav><a href="/about">About</a></nav>
<a class="row" href="/vercel-labs/agent-skills/react-best-practices">
  <h3 class="font-semibold">react-best-practices</h3>
  <p class="text-sm font-mono">vercel-labs/agent-skills</p>
</a>
<a href="/acme/tools/deploy"><h3>deploy</h3></a>
<a href="/acme/tools/no-heading"><span>nothing</span></a>
<a href="/acme/tools/deploy-again"><h3>Deploy</h3></a>
"""


class AwesomeReadmeTests(unittest.TestCase):
    def test_table_rows_and_list_items(self) -> None:
        skills = parse_awesome_readme(AWESOME_README)
        self.assertEqual([s.name for s in skills], ["Agentic Eval", "Prompt Builder"])

        eval_skill = skills[0]
        self.assertEqual(eval_skill.slug, "agentic-eval")
        self.assertEqual(eval_skill.description, "Evaluate agents with rubrics")
        self.assertEqual(
            eval_skill.sourceUrl,
            "https://github.com/github/awesome-copilot/tree/main/skills/agentic-eval",
        )
        self.assertEqual(eval_skill.source, "awesome-copilot")
        self.assertEqual(skills[1].sourceUrl, "https://github.com/example/prompts")
        self.assertEqual(skills[1].description, "Builds prompts")


class SkillsShTests(unittest.TestCase):
    def test_entries_with_heading_are_parsed_and_deduplicated(self) -> None:
        skills = parse_skills_sh_html(SKILLS_SH_HTML)
        self.assertEqual([s.name for s in skills], ["react-best-practices", "deploy"])
        self.assertEqual(skills[0].description, "vercel-labs/agent-skills")
        self.assertEqual(skills[0].sourceUrl, "https://github.com/vercel-labs/agent-skills")
        self.assertEqual(skills[1].description, "acme/tools")
        self.assertTrue(all(s.source == "skills.sh" for s in skills))


class DeduplicationTests(unittest.TestCase):
    def test_awesome_copilot_wins_on_slug_collision(self) -> None:
        skills = deduplicate_skills(
            [
                Skill(name="Code Review", description="from skills.sh", source="skills.sh"),
                Skill(name="code-review", description="from awesome", source="awesome-copilot"),
                Skill(name="Other", description="unique", source="skills.sh"),
            ]
        )
        self.assertEqual([s.description for s in skills], ["from awesome", "unique"])


class InstalledSkillTests(unittest.TestCase):
    def test_frontmatter_fields(self) -> None:
        content = "---\nname: \"Testing Patterns\"\ndescription: How we test\nconfidence: medium\n---\n# Ignored\n"
        skill = parse_installed_skill("testing-patterns", content)
        self.assertEqual(skill.name, "Testing Patterns")
        self.assertEqual(skill.slug, "testing-patterns")
        self.assertEqual(skill.description, "How we test")
        self.assertEqual(skill.confidence, "medium")
        self.assertEqual(skill.source, "local")
        self.assertEqual(skill.content, content)

    def test_heading_and_first_paragraph_fallback(self) -> None:
        content = "# Skill: Release Checklist\n\n> note\n\nSteps to cut a release.\n"
        skill = parse_installed_skill("release", content)
        self.assertEqual(skill.name, "Release Checklist")
        self.assertEqual(skill.description, "Steps to cut a release.")
        self.assertIsNone(skill.confidence)

    def test_directory_name_when_nothing_else(self) -> None:
        skill = parse_installed_skill("bare", "")
        self.assertEqual(skill.name, "bare")
        self.assertEqual(skill.description, "bare")

    def test_unknown_confidence_is_dropped(self) -> None:
        skill = parse_installed_skill("x", "---\nname: X ray\nconfidence: extreme\n---\n")
        self.assertIsNone(skill.confidence)


class StubTests(unittest.TestCase):
    def test_stub_carries_metadata_and_note(self) -> None:
        skill = Skill(
            name="Agentic Eval",
            description="Evaluate agents",
            source="awesome-copilot",
            sourceUrl="https://github.com/github/awesome-copilot/tree/main/skills/agentic-eval",
        )
        stub = build_skill_stub(skill)
        fm, body = extract_frontmatter(stub)
        self.assertEqual(fm["name"], "Agentic Eval")
        self.assertEqual(fm["sourceUrl"], skill.sourceUrl)
        self.assertIn("# Agentic Eval", body)
        self.assertIn("could not be fetched", body)

        reparsed = parse_installed_skill("agentic-eval", stub)
        self.assertEqual(reparsed.name, "Agentic Eval")
        self.assertEqual(reparsed.description, "Evaluate agents")


if __name__ == "__main__":
    unittest.main()
