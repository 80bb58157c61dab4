"""Response normalizer: maps raw backend envelopes onto the uniform result models."""

import logging
import re
from typing import Any

from shared.query.QueryCompiler import index_alias
from shared.query.errors import ResponseFormatError
from shared.query.models.Compiled import CompiledMember, SelectionNode
from shared.query.models.Result import (
    AggregateGroup,
    AggregateResult,
    AnswerSection,
    ErrorDescriptor,
    GenerationEntry,
    GenerationSection,
    QueryResult,
    Record,
    RecordMetadata,
    RecordResult,
    ResultMeta,
    SpellCheck,
    SpellCheckChange,
)

PLACEHOLDER = re.compile(r"\{([A-Za-z_][\w.]*)\}")


def _lookup(properties: dict[str, Any], dotted: str) -> Any:
    current: Any = properties
    for part in dotted.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return None
    return current


def resolve_placeholders(template: str, properties: dict[str, Any]) -> str:
    """Replace `{property}` placeholders with record values. Unknown placeholders are left as-is."""

    def replace(match: re.Match) -> str:
        value = _lookup(properties, match.group(1))
        return match.group(0) if value is None else str(value)

    return PLACEHOLDER.sub(replace, template)


def fold_indexed(properties: dict[str, Any], nodes: tuple[SelectionNode, ...]) -> dict[str, Any]:
    """Fold `name__<i>` aliases produced by indexed selections back into `name[i]`."""
    for node in nodes:
        if node.kind != "property":
            continue
        name = node.key
        named = tuple(c for c in node.children if c.kind == "property")
        if named and isinstance(properties.get(name), dict):
            properties[name] = fold_indexed(dict(properties[name]), named)
        elif named and isinstance(properties.get(name), list):
            properties[name] = [fold_indexed(dict(v), named) if isinstance(v, dict) else v for v in properties[name]]

        for indexed in (c for c in node.children if c.kind == "index"):
            alias = index_alias(name, indexed.key)
            if alias not in properties:
                continue
            element = properties.pop(alias)
            if isinstance(element, dict) and indexed.children:
                element = fold_indexed(dict(element), indexed.children)
            current = properties.get(name)
            items = list(current) if isinstance(current, list) else []
            while len(items) <= indexed.key:
                items.append(None)
            if isinstance(items[indexed.key], dict) and isinstance(element, dict):
                items[indexed.key] = {**items[indexed.key], **element}
            else:
                items[indexed.key] = element
            properties[name] = items
    return properties


class ResponseNormalizer:
    """Turns Get, Aggregate, Generate-from-one, Generate-from-many and Q&A envelopes into QueryResults."""

    def __init__(self, logger: logging.Logger | None = None):
        self.logging = logger or logging.getLogger(__name__)

    ##########################################
    ################ ERRORS ##################
    ##########################################

    def _errors_for(self, member: CompiledMember, envelope: dict, multiplexed: bool) -> list[ErrorDescriptor]:
        """Collect backend errors belonging to this member.

        In multiplexed responses an error whose path names another member's alias is skipped;
        errors without a path concern the whole request and are attached to every member.
        """
        descriptors: list[ErrorDescriptor] = []
        for raw in envelope.get("errors") or []:
            if not isinstance(raw, dict):
                descriptors.append(ErrorDescriptor(message=str(raw)))
                continue
            path = list(raw.get("path") or [])
            if multiplexed and len(path) >= 2 and path[1] != member.result_key:
                continue
            code = (raw.get("extensions") or {}).get("code")
            descriptors.append(ErrorDescriptor(message=str(raw.get("message", "")), path=path, code=code))
        return descriptors

    def _note_dropped(self, member: CompiledMember, index: int, item: Any, errors: list[ErrorDescriptor]) -> None:
        path: list[str | int] = [member.operation, member.result_key, index]
        self.logging.warning("Dropping %s item at %s in response for %r.", type(item).__name__, path, member.collection)
        if any(error.path[:3] == path for error in errors):
            return
        errors.append(ErrorDescriptor(message=f"Backend returned {item!r} instead of an object.", path=path))

    ##########################################
    ############### RECORDS ##################
    ##########################################

    @staticmethod
    def _spell_checks(raw: Any) -> list[SpellCheck]:
        checks: list[SpellCheck] = []
        for item in raw or []:
            checks.append(SpellCheck(
                original_text=item.get("originalText"),
                did_you_mean=item.get("didYouMean"),
                location=item.get("location"),
                number_of_corrections=item.get("numberOfCorrections") or 0,
                changes=[
                    SpellCheckChange(original=c.get("original", ""), corrected=c.get("corrected", ""))
                    for c in item.get("changes") or []
                ],
            ))
        return checks

    def _metadata(self, additional: dict | None) -> RecordMetadata | None:
        if not additional:
            return None
        rerank = additional.get("rerank")
        if isinstance(rerank, list):
            rerank = rerank[0] if rerank else None
        metadata = RecordMetadata(
            id=additional.get("id"),
            certainty=additional.get("certainty"),
            distance=additional.get("distance"),
            score=_to_float(additional.get("score")),
            rerank_score=(rerank or {}).get("score"),
            spell_check=self._spell_checks(additional.get("spellCheck")),
            group=additional.get("group"),
        )
        if metadata == RecordMetadata():
            return None
        return metadata

    def _records(
        self, member: CompiledMember, items: list, errors: list[ErrorDescriptor],
    ) -> tuple[list[Record], list[dict]]:
        """Returns the records and, aligned with them, each record's raw `_additional` block.

        Null items (a record the backend nulled out while reporting an error) are skipped
        and noted in `errors`.
        """
        records: list[Record] = []
        raw_additional: list[dict] = []
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                self._note_dropped(member, index, item, errors)
                continue
            properties = dict(item)
            additional = properties.pop("_additional", None) or {}
            properties = fold_indexed(properties, member.selection)
            records.append(Record(properties=properties, additional=self._metadata(additional)))
            raw_additional.append(additional)
        return records, raw_additional

    ##########################################
    ############## GENERATION ################
    ##########################################

    def _from_one(self, member: CompiledMember, records: list[Record], raw: list[dict]) -> GenerationSection:
        entries: list[GenerationEntry] = []
        for record, additional in zip(records, raw):
            generated = additional.get("generate") or {}
            error = generated.get("error")
            result = generated.get("singleResult")
            if result is None and error is None:
                error = "No generation result returned for this record."
            prompt = None
            if member.generation.substitution == "client":
                prompt = [
                    {**message, "content": resolve_placeholders(message.get("content", ""), record.properties)}
                    for message in member.generation.messages
                ]
            entries.append(GenerationEntry(record=record, result=result, error=error, prompt=prompt))
        failed = sum(1 for entry in entries if entry.error)
        if failed:
            self.logging.warning("Per-record generation failed for %d of %d records on %r.", failed, len(entries), member.collection)
        return GenerationSection(kind="from_one", entries=entries)

    @staticmethod
    def _from_many(raw: list[dict]) -> GenerationSection:
        # the synthesized result is attached to the first record that carries it
        for additional in raw:
            generated = additional.get("generate") or {}
            if generated.get("groupedResult") is not None or generated.get("error"):
                return GenerationSection(kind="from_many", result=generated.get("groupedResult"), error=generated.get("error"))
        return GenerationSection(kind="from_many")

    @staticmethod
    def _answer(records: list[Record], raw: list[dict]) -> AnswerSection:
        for additional in raw:
            answer = additional.get("answer")
            if not answer:
                continue
            source_ids = answer.get("sources")
            if source_ids is None:
                sources = list(records)
            else:
                wanted = set(source_ids)
                sources = [r for r in records if r.additional is not None and r.additional.id in wanted]
            return AnswerSection(text=answer.get("result"), sources=sources, error=answer.get("error"))
        return AnswerSection()

    ##########################################
    ############### AGGREGATE ################
    ##########################################

    def _groups(self, member: CompiledMember, items: list, errors: list[ErrorDescriptor]) -> list[AggregateGroup]:
        groups: list[AggregateGroup] = []
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                self._note_dropped(member, index, item, errors)
                continue
            grouped_by = item.get("groupedBy") or {}
            statistics = {
                key: value for key, value in item.items()
                if key not in ("meta", "groupedBy") and isinstance(value, dict)
            }
            groups.append(AggregateGroup(
                group_key=grouped_by.get("value"),
                group_path=list(grouped_by.get("path") or []),
                count=(item.get("meta") or {}).get("count"),
                statistics=statistics,
            ))
        return groups

    ##########################################
    ################# CORE ###################
    ##########################################

    def normalize(self, member: CompiledMember, envelope: dict, multiplexed: bool = False) -> QueryResult:
        """Normalize the part of a raw envelope that belongs to one compiled member.

        Data that was returned is always normalized, even when the envelope also reports errors.

        Args:
            member (CompiledMember): The compiled member the data answers.
            envelope (dict): The raw backend response `{"data": ..., "errors": [...]}`.
            multiplexed (bool): Whether the envelope answers a multiplexed request.

        Returns:
            QueryResult: A RecordResult or an AggregateResult.
        """
        errors = self._errors_for(member, envelope, multiplexed)
        data = envelope.get("data") or {}
        items = (data.get(member.operation) or {}).get(member.result_key) or []
        if not isinstance(items, list):
            raise ResponseFormatError(
                f"Expected a list under {member.operation}.{member.result_key}, got {type(items).__name__}."
            )
        totals = (envelope.get("extensions") or {}).get("totals") or {}

        if member.operation == "Aggregate":
            groups = self._groups(member, items, errors)
            total = totals.get(member.result_key)
            if total is None and groups and all(g.count is not None for g in groups):
                total = sum(g.count for g in groups)
            return AggregateResult(
                collection=member.collection,
                payload=groups,
                meta=ResultMeta(count=len(groups), total=total),
                errors=errors,
            )

        records, raw = self._records(member, items, errors)
        result = RecordResult(
            collection=member.collection,
            payload=records,
            meta=ResultMeta(count=len(records), total=totals.get(member.result_key)),
            errors=errors,
        )
        plan = member.generation
        if plan is not None:
            if plan.kind == "from_one":
                result.generation = self._from_one(member, records, raw)
            elif plan.kind == "from_many":
                result.generation = self._from_many(raw)
            else:
                result.answer = self._answer(records, raw)
        return result


def _to_float(value: Any) -> float | None:
    # keyword and hybrid scores come back as strings
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
