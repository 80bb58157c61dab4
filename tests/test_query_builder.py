"""
Tests for shared/query/QueryBuilder.py
Fluent clone-on-write builder and its clause validation.
"""

import pytest

from shared.query.CollectionRegistry import CollectionRegistry
from shared.query.QueryBuilder import QueryBuilder
from shared.query.errors import ConfigurationError
from shared.query.models.Filter import FilterGroup, FilterLeaf


def base_query() -> QueryBuilder:
    return QueryBuilder.collection("TextDocument").select("id", "title").about("climate change")


# =============================================================================
# Entry point and immutability
# =============================================================================

class TestCollectionEntryPoint:
    def test_empty_collection_rejected(self):
        with pytest.raises(ConfigurationError):
            QueryBuilder.collection("")
        with pytest.raises(ConfigurationError):
            QueryBuilder.collection("   ")

    def test_new_query_is_plain_get(self):
        clause = QueryBuilder.collection("TextDocument").clause
        assert clause.collection == "TextDocument"
        assert clause.operation == "Get"
        assert clause.search is None
        assert clause.filter is None


class TestCloneOnWrite:
    def test_template_is_not_modified(self):
        base = base_query()
        top5 = base.limit(5)
        top50 = base.limit(50)

        assert base.clause.limit is None
        assert top5.clause.limit == 5
        assert top50.clause.limit == 50
        assert top5.clause.search == base.clause.search

    def test_clone_then_limit_matches_direct_limit(self):
        base = base_query()
        assert base.clone().limit(5).clause == base.limit(5).clause
        assert base.clone().limit(5).compile().to_bytes() == base.limit(5).compile().to_bytes()

    def test_clone_is_independent_handle(self):
        base = base_query()
        copy = base.clone()
        assert copy is not base
        assert copy.clause == base.clause

    def test_select_ignores_duplicates_and_keeps_order(self):
        query = QueryBuilder.collection("A").select("title", "body").select("title", "author")
        assert [str(p) for p in query.clause.selection] == ["title", "body", "author"]

    def test_select_needs_a_path(self):
        with pytest.raises(ConfigurationError):
            QueryBuilder.collection("A").select()


# =============================================================================
# Search exclusivity and dependent clauses
# =============================================================================

class TestSearchClauses:
    def test_second_search_rejected(self):
        with pytest.raises(ConfigurationError, match="about"):
            base_query().match("climate")

    @pytest.mark.parametrize("add_search", [
        lambda q: q.find("x"),
        lambda q: q.near_vector(vector=[0.1, 0.2]),
        lambda q: q.similar("abc"),
    ])
    def test_every_variant_conflicts(self, add_search):
        with pytest.raises(ConfigurationError):
            add_search(base_query())

    def test_certainty_out_of_range(self):
        with pytest.raises(ConfigurationError):
            QueryBuilder.collection("A").about("x", certainty=1.5)

    def test_find_alpha_out_of_range(self):
        with pytest.raises(ConfigurationError):
            QueryBuilder.collection("A").find("x", alpha=-0.1)

    def test_near_vector_needs_exactly_one_source(self):
        with pytest.raises(ConfigurationError):
            QueryBuilder.collection("A").near_vector()
        with pytest.raises(ConfigurationError):
            QueryBuilder.collection("A").near_vector(vector=[0.1], source_id="abc", property="body")

    def test_near_vector_source_needs_property(self):
        with pytest.raises(ConfigurationError):
            QueryBuilder.collection("A").near_vector(source_id="abc")
        query = QueryBuilder.collection("A").near_vector(source_id="abc", property="body")
        assert query.clause.search.kind == "near_vector"

    def test_rerank_requires_search(self):
        with pytest.raises(ConfigurationError, match="rerank"):
            QueryBuilder.collection("A").rerank("climate", "body")

    def test_spell_check_requires_search(self):
        with pytest.raises(ConfigurationError, match="spell_check"):
            QueryBuilder.collection("A").spell_check()

    def test_spell_check_rejected_for_vector_search(self):
        with pytest.raises(ConfigurationError):
            QueryBuilder.collection("A").near_vector(vector=[0.1]).spell_check()

    def test_spell_check_on_text_search(self):
        assert QueryBuilder.collection("A").match("climat").spell_check().clause.spell_check is True

    def test_rerank_and_group_by_conflict(self):
        with pytest.raises(ConfigurationError):
            base_query().rerank("climate", "body").group_by("category", 3)


# =============================================================================
# Filters, sorting and pagination
# =============================================================================

class TestFilterAndPaging:
    def test_repeated_where_is_anded(self):
        query = QueryBuilder.collection("A").where({"year": 2020}).where({"lang": "en"})
        node = query.clause.filter
        assert isinstance(node, FilterGroup)
        assert node.operator == "And"
        assert [str(leaf.path) for leaf in node.operands] == ["year", "lang"]

    def test_where_accepts_builder_function(self):
        query = QueryBuilder.collection("A").where(lambda op: op.GreaterThan("rating", 3))
        assert isinstance(query.clause.filter, FilterLeaf)
        assert query.clause.filter.operator == "GreaterThan"

    def test_empty_where_leaves_filter_unchanged(self):
        assert QueryBuilder.collection("A").where({}).clause.filter is None
        query = QueryBuilder.collection("A").where({"year": 2020})
        assert query.where({}).clause == query.clause

    def test_sort_keys_keep_priority(self):
        query = QueryBuilder.collection("A").sort("year", "desc").sort("title")
        assert [(str(s.path), s.direction) for s in query.clause.sort] == [("year", "desc"), ("title", "asc")]

    def test_sort_on_nested_property(self):
        query = QueryBuilder.collection("A").sort("author.name")
        assert query.clause.sort[0].path.property_names() == ["author", "name"]

    @pytest.mark.parametrize("field", ["tags.0", "images.1.url"])
    def test_sort_rejects_list_index(self, field):
        with pytest.raises(ConfigurationError):
            QueryBuilder.collection("A").sort(field, "desc")

    @pytest.mark.parametrize("value", [-1, 1.5, True, "10"])
    def test_invalid_limit(self, value):
        with pytest.raises(ConfigurationError):
            QueryBuilder.collection("A").limit(value)

    def test_zero_offset_allowed(self):
        assert QueryBuilder.collection("A").offset(0).clause.offset == 0

    @pytest.mark.parametrize("path", ["tags..name", "0.name", "", "tags.0.1"])
    def test_invalid_paths(self, path):
        with pytest.raises(ConfigurationError):
            QueryBuilder.collection("A").select(path)

    def test_group_by_needs_positive_groups(self):
        with pytest.raises(ConfigurationError):
            base_query().group_by("category", 0)


# =============================================================================
# Generation and aggregation
# =============================================================================

class TestGeneration:
    def test_second_generation_rejected(self):
        query = base_query().generate_from_one(prompt="Summarize {title}")
        with pytest.raises(ConfigurationError):
            query.generate_from_many(task="Summarize all")

    def test_prompt_and_messages_are_exclusive(self):
        with pytest.raises(ConfigurationError):
            base_query().generate_from_one(prompt="x", messages=[{"role": "user", "content": "y"}])
        with pytest.raises(ConfigurationError):
            base_query().generate_from_one()

    def test_messages_are_validated(self):
        with pytest.raises(ConfigurationError):
            base_query().generate_from_one(messages=[{"role": "robot", "content": "x"}])

    def test_unknown_option_rejected(self):
        with pytest.raises(ConfigurationError):
            base_query().generate_from_one(prompt="x", colour="blue")

    def test_options_are_kept(self):
        query = base_query().generate_from_many(task="Summarize", model="small", temperature=0.2)
        options = query.clause.generation.options
        assert options.model == "small"
        assert options.temperature == 0.2

    def test_generation_needs_search_or_selection(self):
        query = QueryBuilder.collection("A").generate_from_many(task="Summarize")
        with pytest.raises(ConfigurationError):
            query.validate_complete()
        with pytest.raises(ConfigurationError):
            query.compile()

    def test_generation_with_selection_only(self):
        query = QueryBuilder.collection("A").select("title").ask("What is it about?")
        assert query.validate_complete().generation.kind == "ask"


class TestAggregate:
    def test_aggregate_switches_operation(self):
        query = QueryBuilder.collection("Product").aggregate({"price": ["mean"]}, group_by="category")
        assert query.clause.operation == "Aggregate"

    def test_unknown_metric_rejected(self):
        with pytest.raises(ConfigurationError):
            QueryBuilder.collection("Product").aggregate({"price": ["average"]})

    @pytest.mark.parametrize("prepare", [
        lambda q: q.sort("price"),
        lambda q: q.select("title"),
        lambda q: q.offset(10),
        lambda q: q.about("x").generate_from_many(task="t"),
    ])
    def test_aggregate_conflicts(self, prepare):
        with pytest.raises(ConfigurationError, match="aggregate"):
            prepare(QueryBuilder.collection("Product")).aggregate({"price": ["mean"]})

    def test_aggregate_allows_filter_and_search(self):
        query = (
            QueryBuilder.collection("Product")
            .where({"in_stock": True})
            .about("outdoor gear")
            .aggregate({"price": ["mean"]})
        )
        assert query.clause.filter is not None
        assert query.clause.search is not None


# =============================================================================
# Registry checks and execution binding
# =============================================================================

class TestRegistry:
    @pytest.fixture
    def registry(self):
        return CollectionRegistry({"TextDocument": ["title", "body", "year"]})

    def test_unknown_field_rejected(self, registry):
        query = QueryBuilder.collection("TextDocument", registry=registry)
        with pytest.raises(ConfigurationError, match="author"):
            query.select("author")
        with pytest.raises(ConfigurationError):
            query.where({"rating": 3})
        with pytest.raises(ConfigurationError):
            query.sort("rating")

    def test_known_fields_accepted(self, registry):
        query = QueryBuilder.collection("TextDocument", registry=registry).select("title").where({"year": 2020})
        assert len(query.clause.selection) == 1

    def test_untyped_collection_accepts_anything(self, registry):
        query = QueryBuilder.collection("Other", registry=registry).select("whatever.0.deep")
        assert str(query.clause.selection[0]) == "whatever.0.deep"


class TestExecutionBinding:
    async def test_execute_without_executor(self):
        with pytest.raises(ConfigurationError):
            await base_query().execute()
