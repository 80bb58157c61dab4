"""
Tests for shared/query/QueryCompiler.py
Clause models compiled into GraphQL documents, single and batched.
"""

import json
import logging

import pytest

from shared.query.QueryBuilder import QueryBuilder
from shared.query.QueryCompiler import QueryCompiler, build_selection_tree, render_selection, render_value
from shared.query.errors import InternalInvariantError
from shared.query.models.Compiled import BatchStrategy, GraphQLEnum
from shared.query.models.Path import FieldPath
from shared.query.models.Search import About


@pytest.fixture
def compiler():
    return QueryCompiler()


# =============================================================================
# Rendering helpers
# =============================================================================

class TestRendering:
    @pytest.mark.parametrize("value,expected", [
        (True, "true"),
        (None, "null"),
        (3, "3"),
        (0.25, "0.25"),
        ('say "hi"', '"say \\"hi\\""'),
        (GraphQLEnum("desc"), "desc"),
        ([1, "a"], '[1, "a"]'),
        ({"path": ["year"], "order": GraphQLEnum("asc")}, '{path: ["year"], order: asc}'),
    ])
    def test_render_value(self, value, expected):
        assert render_value(value) == expected

    def test_unrenderable_value(self):
        with pytest.raises(InternalInvariantError):
            render_value(object())

    def test_selection_tree_merges_paths(self):
        paths = tuple(FieldPath.parse(p) for p in ("author.name", "title", "author.email"))
        assert render_selection(build_selection_tree(paths)) == ["author { name email }", "title"]

    def test_deeper_path_narrows_bare_selection(self, compiler, caplog):
        clause = QueryBuilder.collection("A").select("details", "details.width").clause
        with caplog.at_level(logging.WARNING):
            request = compiler.compile(clause)
        assert request.query == "{ Get { A { details { width } } } }"
        assert "Selection 'details' on 'A' is narrowed" in caplog.text

    def test_disjoint_selection_does_not_warn(self, compiler, caplog):
        clause = QueryBuilder.collection("A").select("title", "details.width").clause
        with caplog.at_level(logging.WARNING):
            compiler.compile(clause)
        assert "narrowed" not in caplog.text

    def test_indexed_selection_is_aliased(self):
        paths = tuple(FieldPath.parse(p) for p in ("title", "images.0.url", "images.2.url"))
        rendered = render_selection(build_selection_tree(paths))
        assert rendered == [
            "title",
            "images__0: images(index: 0) { url }",
            "images__2: images(index: 2) { url }",
        ]


# =============================================================================
# Get members
# =============================================================================

class TestGetCompilation:
    def test_semantic_search_document(self):
        request = (
            QueryBuilder.collection("TextDocument")
            .select("id", "title")
            .about("climate change")
            .limit(5)
            .compile()
        )
        assert request.query == (
            '{ Get { TextDocument(nearText: {concepts: ["climate change"]}, limit: 5) '
            "{ id title _additional { id certainty distance } } } }"
        )
        assert request.member.result_key == "TextDocument"
        assert request.member.pipeline == ("search", "paginate")
        assert request.member.search_kind == "about"

    def test_plain_retrieval_needs_no_metadata(self):
        request = QueryBuilder.collection("TextDocument").select("title").compile()
        assert request.query == "{ Get { TextDocument { title } } }"
        assert request.member.pipeline == ()

    def test_empty_selection_still_selects_a_field(self):
        request = QueryBuilder.collection("TextDocument").compile()
        assert request.query == "{ Get { TextDocument { _additional { id } } } }"

    @pytest.mark.parametrize("build", [
        lambda q: q.where({"year": {"$gte": 2020}}).about("climate"),
        lambda q: q.about("climate").where({"year": {"$gte": 2020}}),
    ])
    def test_filter_precedes_search(self, build):
        request = build(QueryBuilder.collection("TextDocument").select("title")).compile()
        member = request.member
        assert list(member.arguments)[:2] == ["where", "nearText"]
        assert member.arguments["nearText"]["filterStrategy"] == "PRE"
        assert member.pipeline == ("filter", "search")
        assert request.query.index("where:") < request.query.index("nearText:")
        assert 'where: {path: ["year"], operator: GreaterThanEqual, valueInt: 2020}' in request.query

    @pytest.mark.parametrize("value,fragment", [
        (2.5, "valueNumber: 2.5"),
        ("en", 'valueText: "en"'),
        (True, "valueBoolean: true"),
        (["a", "b"], 'valueTextArray: ["a", "b"]'),
        ([1, 2], "valueIntArray: [1, 2]"),
        ([1, 2.5], "valueNumberArray: [1, 2.5]"),
        ([2.5, 1], "valueNumberArray: [2.5, 1]"),
        ([True, False], "valueBooleanArray: [true, false]"),
    ])
    def test_typed_filter_values(self, compiler, value, fragment):
        clause = QueryBuilder.collection("A").select("x").where({"field": value}).clause
        assert fragment in compiler.compile(clause).query

    def test_compound_filter(self, compiler):
        clause = QueryBuilder.collection("A").select("x").where({"$or": [{"lang": "en"}, {"lang": "de"}]}).clause
        where = compiler.compile(clause).member.arguments["where"]
        assert where["operator"] == "Or"
        assert [operand["valueText"] for operand in where["operands"]] == ["en", "de"]

    def test_null_check_uses_boolean(self, compiler):
        clause = QueryBuilder.collection("A").select("x").where({"author": None}).clause
        assert 'where: {path: ["author"], operator: IsNull, valueBoolean: true}' in compiler.compile(clause).query

    def test_sort_and_pagination(self):
        request = (
            QueryBuilder.collection("A").select("title")
            .sort("year", "desc").sort("title").limit(10).offset(20)
            .compile()
        )
        assert (
            'sort: [{path: ["year"], order: desc}, {path: ["title"], order: asc}], limit: 10, offset: 20'
            in request.query
        )
        assert request.member.pipeline == ("sort", "paginate")

    def test_hybrid_search(self):
        request = (
            QueryBuilder.collection("A").select("title")
            .find("solar", alpha=0.7, fusion_type="relativeScoreFusion", property_weights={"title": 2, "body": 1})
            .compile()
        )
        assert (
            'hybrid: {query: "solar", alpha: 0.7, fusionType: relativeScoreFusion, properties: ["title^2", "body"]}'
            in request.query
        )
        assert "_additional { id score }" in request.query

    def test_keyword_search_with_spell_check(self):
        request = QueryBuilder.collection("A").select("title").match("climat", properties=["title"]).spell_check().compile()
        assert 'bm25: {query: "climat", properties: ["title"], autocorrect: true}' in request.query
        assert "spellCheck { originalText didYouMean" in request.query

    def test_near_vector_by_source(self):
        request = QueryBuilder.collection("A").select("title").near_vector(source_id="abc", property="body", distance=0.3).compile()
        assert 'nearVector: {sourceId: "abc", targetProperty: "body", distance: 0.3}' in request.query

    def test_similar(self):
        request = QueryBuilder.collection("A").select("title").similar("abc").compile()
        assert 'nearObject: {id: "abc"}' in request.query

    def test_rerank(self):
        request = QueryBuilder.collection("A").select("title").about("climate").rerank("sea level", "body").compile()
        assert 'rerank(property: "body", query: "sea level") { score }' in request.query
        assert request.member.pipeline == ("search", "rerank")

    def test_group_by(self):
        request = QueryBuilder.collection("A").select("title").about("climate").group_by("category", 3, 2).compile()
        assert 'groupBy: {path: ["category"], groups: 3, objectsPerGroup: 2}' in request.query
        assert "group { id groupedBy { path value } count }" in request.query
        assert request.member.pipeline == ("search", "group")


# =============================================================================
# Generation
# =============================================================================

class TestGenerationCompilation:
    def test_from_one_prompt_is_substituted_by_backend(self):
        request = QueryBuilder.collection("A").select("title").about("climate").generate_from_one(prompt="Summarize {title}").compile()
        assert 'generate(singleResult: {prompt: "Summarize {title}"}) { singleResult error }' in request.query
        assert request.member.generation.kind == "from_one"
        assert request.member.generation.substitution == "server"
        assert request.member.pipeline[-1] == "generate"

    def test_from_one_messages_are_kept_for_the_client(self):
        messages = [{"role": "system", "content": "Be brief."}, {"role": "user", "content": "Summarize {title}"}]
        request = QueryBuilder.collection("A").select("title").about("climate").generate_from_one(messages=messages).compile()
        plan = request.member.generation
        assert plan.substitution == "client"
        assert list(plan.messages) == messages
        assert 'singleResult: {messages: [{role: "system", content: "Be brief."}' in request.query

    def test_from_many_with_options(self):
        request = (
            QueryBuilder.collection("A").select("title").about("climate")
            .generate_from_many(task="Write a digest", properties=["title"], model="small", max_tokens=200)
            .compile()
        )
        assert (
            'generate(groupedResult: {task: "Write a digest", properties: ["title"]}, '
            'options: {model: "small", maxTokens: 200}) { groupedResult error }'
        ) in request.query

    def test_ask(self):
        request = QueryBuilder.collection("A").select("title").about("climate").ask("What rises?").compile()
        assert 'answer(question: "What rises?") { result sources error }' in request.query
        assert request.member.generation.kind == "ask"

    def test_generation_without_search_selects_id(self):
        request = QueryBuilder.collection("A").select("title").generate_from_many(task="t").compile()
        assert "_additional { id generate(" in request.query


# =============================================================================
# Aggregate members
# =============================================================================

class TestAggregateCompilation:
    def test_grouped_aggregate(self):
        request = (
            QueryBuilder.collection("Product")
            .where({"in_stock": True})
            .aggregate({"price": ["mean", "maximum"], "brand": ["topOccurrences"]}, group_by="category")
            .limit(100)
            .compile()
        )
        assert request.query == (
            '{ Aggregate { Product(where: {path: ["in_stock"], operator: Equal, valueBoolean: true}, '
            'groupBy: ["category"], objectLimit: 100) { meta { count } groupedBy { path value } '
            "price { mean maximum } brand { topOccurrences { value occurs } } } } }"
        )
        assert request.member.operation == "Aggregate"
        assert request.member.aggregate_group_by == "category"
        assert request.member.pipeline == ("filter", "group", "paginate", "aggregate")

    def test_count_only(self):
        request = QueryBuilder.collection("Product").aggregate({}).compile()
        assert request.query == "{ Aggregate { Product { meta { count } } } }"


# =============================================================================
# Determinism and batching
# =============================================================================

class TestDeterminism:
    def test_compiling_twice_is_byte_identical(self, compiler):
        clause = (
            QueryBuilder.collection("A").select("title", "tags.0")
            .where({"year": 2020, "lang": ["en", "de"]})
            .find("solar", alpha=0.3)
            .generate_from_one(prompt="Summarize {title}")
            .limit(3)
            .clause
        )
        first = compiler.compile(clause)
        second = compiler.compile(clause)
        assert first.to_bytes() == second.to_bytes()
        assert json.loads(first.to_bytes()) == {"query": first.query}

    def test_two_search_directives_are_an_invariant_violation(self, compiler):
        clause = QueryBuilder.collection("A").select("x").clause
        broken = clause.model_copy(update={"search": [About(concept="a"), About(concept="b")]})
        with pytest.raises(InternalInvariantError):
            compiler.compile(broken)


class TestBatchCompilation:
    def test_multiplexed_shares_one_document(self, compiler):
        clauses = [
            QueryBuilder.collection("A").select("title").about("x").clause,
            QueryBuilder.collection("B").select("name").clause,
            QueryBuilder.collection("A").aggregate({"price": ["mean"]}).clause,
        ]
        plan = compiler.compile_batch(clauses, BatchStrategy.MULTIPLEXED)
        assert len(plan.requests) == 1
        request = plan.requests[0]
        assert request.multiplexed
        assert [m.result_key for m in request.members] == ["q0", "q1", "q2"]
        assert request.query.startswith("{ Get { q0: A(")
        assert "q1: B { name }" in request.query
        assert "Aggregate { q2: A { meta { count } price { mean } } }" in request.query
        assert plan.slots == ((0, 0), (0, 1), (0, 2))

    def test_independent_compiles_one_request_each(self, compiler):
        clauses = [
            QueryBuilder.collection("A").select("title").clause,
            QueryBuilder.collection("B").select("name").clause,
        ]
        plan = compiler.compile_batch(clauses, "independent")
        assert plan.strategy == BatchStrategy.INDEPENDENT
        assert [r.member.collection for r in plan.requests] == ["A", "B"]
        assert not any(r.multiplexed for r in plan.requests)
        assert plan.slots == ((0, 0), (1, 0))
