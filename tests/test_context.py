"""Tests for context block assembly and the deterministic course recommendation."""

import pytest

from eli.config import RecommendationSettings
from eli.directives import parse_directives
from eli.retrieval.context import ContextAssembler, clean_title, is_course_query
from eli.schemas import RetrievalResult, Surface

HOME = "https://solveway.co.uk"


def _result(i, source_type="route", title=None, url="", content=None):
    return RetrievalResult(
        id=f"c{i}",
        content=content or f"Content for result {i}.",
        similarity=1.0 - i * 0.1,
        title=f"Course {i}" if title is None else title,
        url=url,
        source_type=source_type,
    )


@pytest.fixture
def assembler():
    return ContextAssembler(RecommendationSettings(), HOME)


class TestCourseIntent:

    @pytest.mark.parametrize(
        "message",
        [
            "What apprenticeships do you offer?",
            "Tell me about your COURSES",
            "Is there a programme for data?",
            "Any training for managers",
            "e-learning options",
            "Can I study part time?",
        ],
    )
    def test_course_queries(self, message):
        assert is_course_query(message)

    def test_non_course_query(self):
        assert not is_course_query("Where is your office?")
        assert not is_course_query("")


class TestCleanTitle:

    def test_strips_source_tag(self):
        assert clean_title("[Source: Software Developer (route)]") == "Software Developer"

    def test_plain_title_unchanged(self):
        assert clean_title("Data Analyst Level 4") == "Data Analyst Level 4"


class TestContextAssembler:

    def test_context_block_tags_title_and_source_type(self, assembler):
        block = assembler.build_context_block([_result(1), _result(2, source_type="policy", title="Privacy")])
        entries = block.split("\n\n")

        assert entries[0] == "[Source: Course 1 (route)] Content for result 1."
        assert entries[1] == "[Source: Privacy (policy)] Content for result 2."

    def test_two_route_results_produce_carousel(self, assembler):
        ctx = assembler.assemble([_result(1), _result(2)], "Which courses do you run?", Surface.PUBLIC)

        assert ctx.is_course_query
        assert ctx.sources_found == 2
        assert ctx.recommendation is not None
        assert 1 <= len(ctx.recommendation.data.items) <= 3

    def test_at_most_three_items(self, assembler):
        results = [_result(i) for i in range(6)]
        ctx = assembler.assemble(results, "apprenticeships?", Surface.PUBLIC)

        assert [c.title for c in ctx.recommendation.data.items] == ["Course 0", "Course 1", "Course 2"]
        assert ctx.sources_found == 6

    def test_single_route_result_gives_no_recommendation(self, assembler):
        ctx = assembler.assemble([_result(1), _result(2, source_type="policy")], "courses", Surface.PUBLIC)
        assert ctx.recommendation is None
        assert ctx.recommendation_token is None

    def test_untitled_routes_do_not_qualify(self, assembler):
        ctx = assembler.assemble([_result(1), _result(2, title="")], "courses", Surface.PUBLIC)
        assert ctx.sources_found == 1
        assert ctx.recommendation is None

    def test_no_course_intent_no_recommendation(self, assembler):
        ctx = assembler.assemble([_result(1), _result(2)], "Where are you based?", Surface.PUBLIC)
        assert not ctx.is_course_query
        assert ctx.recommendation is None

    def test_internal_surface_never_recommends(self, assembler):
        results = [_result(i) for i in range(5)]
        ctx = assembler.assemble(results, "What courses are there?", Surface.INTERNAL)
        assert ctx.recommendation is None
        assert ctx.sources_found == 5

    def test_card_fields(self, assembler):
        long_text = "Line one\nline two " + "x" * 300
        results = [
            _result(1, title="[Source: ICT L3 (route)]", content=long_text, url="https://solveway.co.uk/ict"),
            _result(2),
        ]
        items = assembler.assemble(results, "courses", Surface.PUBLIC).recommendation.data.items

        assert items[0].title == "ICT L3"
        assert "\n" not in items[0].description
        assert items[0].description.endswith("...")
        assert len(items[0].description) <= 153
        assert items[0].url == "https://solveway.co.uk/ict"
        assert items[1].url == HOME

    def test_short_description_still_gets_ellipsis(self, assembler):
        items = assembler.assemble([_result(1), _result(2)], "courses", Surface.PUBLIC).recommendation.data.items
        assert items[0].description == "Content for result 1...."

    def test_recommendation_token_parses_back(self, assembler):
        ctx = assembler.assemble([_result(1), _result(2), _result(3)], "courses", Surface.PUBLIC)
        parsed = parse_directives(ctx.recommendation_token)

        assert parsed.text == ""
        assert [c.title for c in parsed.carousel] == ["Course 1", "Course 2", "Course 3"]
        assert parsed.errors == []
