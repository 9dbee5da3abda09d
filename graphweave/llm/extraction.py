# graphweave/llm/extraction.py
"""
Entity extraction adapters.

- StaticEntityExtractor: regex-based raw entity extraction for
  TypeScript/JavaScript and Python chunks. Works offline and is fully
  deterministic; LLM-backed extractors plug into the same port.
- RetryingExtractor: wraps any EntityExtractionPort with the retry
  contract and falls back to an empty result.
"""

from __future__ import annotations

import re
from typing import List, Optional, Tuple

from graphweave.exceptions import ExtractionError
from graphweave.ingest.chunking.models import DocumentChunk
from graphweave.ingest.entities.models import EntityKind, EntityMetadata, EntityScope, RawEntity
from graphweave.llm.retry import RetryPolicy, call_with_retry
from graphweave.logging.logger import get_logger
from graphweave.logging.tags import EXTRACTION
from graphweave.ports import EntityExtractionPort, ExtractionResult

logger = get_logger(__name__)

JS_LANGUAGES = frozenset({"typescript", "javascript"})

_CALL_KEYWORDS = frozenset(
    {
        "if", "for", "while", "switch", "catch", "function", "return", "typeof", "new",
        "super", "await", "yield", "import", "require", "constructor", "def", "class",
        "elif", "with", "assert", "print", "not", "and", "or", "in", "lambda", "except",
    }
)

# --- TypeScript / JavaScript -------------------------------------------------

_JS_IMPORT_FROM = re.compile(r"^\s*import\s+(?:type\s+)?(?P<what>[^'\"]+?)\s+from\s+['\"](?P<src>[^'\"]+)['\"]")
_JS_IMPORT_BARE = re.compile(r"^\s*import\s+['\"](?P<src>[^'\"]+)['\"]")
_JS_REQUIRE = re.compile(
    r"^\s*(?:const|let|var)\s+(?P<what>[\w${}\s,]+?)\s*=\s*require\(\s*['\"](?P<src>[^'\"]+)['\"]\s*\)"
)
_JS_EXPORT_LIST = re.compile(r"^\s*export\s*\{(?P<names>[^}]*)\}")
_JS_DECL = re.compile(
    r"^(?P<indent>\s*)(?P<export>export\s+(?:default\s+)?)?(?:declare\s+)?(?:abstract\s+)?(?:async\s+)?"
    r"(?P<kw>function\*?|class|interface|type|enum)\s+(?P<name>[A-Za-z_$][\w$]*)"
)
_JS_ARROW = re.compile(
    r"^(?P<indent>\s*)(?P<export>export\s+)?(?:const|let|var)\s+(?P<name>[A-Za-z_$][\w$]*)"
    r"\s*(?::[^=]+)?=\s*(?:async\s*)?(?:\([^)]*\)|[A-Za-z_$][\w$]*)\s*(?::[^=]+)?=>"
)
_JS_VAR = re.compile(r"^(?P<indent>\s*)(?P<export>export\s+)?(?:const|let|var)\s+(?P<name>[A-Za-z_$][\w$]*)")
_JS_METHOD = re.compile(
    r"^\s+(?P<mods>(?:(?:public|private|protected|static|async|readonly|override)\s+)*)"
    r"(?P<name>#?[A-Za-z_$][\w$]*)\s*(?:<[^>]*>)?\s*\([^)]*\)\s*(?::\s*[^{=;]+)?\{"
)
_JS_HERITAGE = re.compile(
    r"\bextends\s+(?P<base>[\w.]+)(?:<[^>{]*>)?(?:\s+implements\s+(?P<ifaces>[\w.,\s<>]+?))?\s*\{"
)
_JS_IMPLEMENTS = re.compile(r"\bimplements\s+(?P<ifaces>[\w.,\s<>]+?)\s*\{")
_JS_TYPE_REF = re.compile(r"(?<![=<>!]):\s*(?P<type>[A-Za-z_$][\w$]*)")

# --- Python ------------------------------------------------------------------

_PY_IMPORT = re.compile(r"^\s*import\s+(?P<mods>[\w., ]+?)\s*(?:#.*)?$")
_PY_FROM = re.compile(r"^\s*from\s+(?P<src>\.*[\w.]*)\s+import\s+\(?(?P<names>[^)#]+)\)?")
_PY_DEF = re.compile(r"^(?P<indent>\s*)(?:async\s+)?(?P<kw>def|class)\s+(?P<name>[A-Za-z_]\w*)\s*(?P<rest>[^\n]*)")
_PY_ASSIGN = re.compile(r"^(?P<indent>\s*)(?P<name>[A-Za-z_]\w*)\s*(?::[^=]+)?=(?!=)")
_PY_TYPE_REF = re.compile(r"(?:->|:)\s*(?P<type>[A-Za-z_]\w*)")

_CALL = re.compile(r"(?<![\w$.])(?P<name>[A-Za-z_$][\w$]*)\s*\(")


def _split_names(text: str) -> List[str]:
    text = re.sub(r"<[^>]*>", "", text)
    return [p.strip() for p in text.split(",") if p.strip()]


def _js_specifiers(what: str) -> Tuple[str, ...]:
    names = []
    what = what.strip()
    braces = re.search(r"\{([^}]*)\}", what)
    if braces:
        for part in braces.group(1).split(","):
            part = part.strip()
            if part:
                names.append(part.split(" as ")[-1].strip().removeprefix("type ").strip())
        what = (what[: braces.start()] + what[braces.end() :]).strip(" ,")
    if what.startswith("* as "):
        names.append(what[5:].strip())
    elif what:
        names.append(what.strip(" ,"))
    return tuple(sorted(n for n in names if n))


def _private(name: str) -> bool:
    return name.startswith("#") or (name.startswith("_") and not name.startswith("__"))


class StaticEntityExtractor:
    """
    Regex-based EntityExtractionPort.

    Produces imports, exports, definitions (class/function/interface/type/
    method), module and local variables, calls and type references. Line
    numbers are absolute within the file.
    """

    model_name = "static-regex"

    async def extract(self, chunk: DocumentChunk) -> ExtractionResult:
        language = chunk.metadata.language
        if language in JS_LANGUAGES:
            entities = self._extract_js(chunk)
        elif language == "python":
            entities = self._extract_python(chunk)
        else:
            entities = []
        return ExtractionResult(entities=tuple(entities), model=self.model_name)

    # ------------------------------------------------------------------

    @staticmethod
    def _base_line(chunk: DocumentChunk) -> int:
        return chunk.metadata.start_line or 1

    def _calls(self, line: str, lineno: int, declared: set) -> List[RawEntity]:
        out = []
        for m in _CALL.finditer(line):
            name = m.group("name")
            if name in _CALL_KEYWORDS or name in declared:
                continue
            out.append(RawEntity(kind=EntityKind.CALL, name=name, line=lineno))
        return out

    def _extract_js(self, chunk: DocumentChunk) -> List[RawEntity]:
        entities: List[RawEntity] = []
        base = self._base_line(chunk)
        in_class = False

        for offset, line in enumerate(chunk.content.split("\n")):
            lineno = base + offset
            stripped = line.strip()
            if not stripped or stripped.startswith(("//", "*", "/*")):
                continue

            m = _JS_IMPORT_FROM.match(line)
            if m:
                src = m.group("src")
                entities.append(
                    RawEntity(
                        kind=EntityKind.IMPORT,
                        name=src,
                        source=src,
                        specifiers=_js_specifiers(m.group("what")),
                        line=lineno,
                    )
                )
                continue
            m = _JS_IMPORT_BARE.match(line) or _JS_REQUIRE.match(line)
            if m:
                src = m.group("src")
                what = m.groupdict().get("what") or ""
                entities.append(
                    RawEntity(
                        kind=EntityKind.IMPORT,
                        name=src,
                        source=src,
                        specifiers=_js_specifiers(what) if what else (),
                        line=lineno,
                    )
                )
                continue

            m = _JS_EXPORT_LIST.match(line)
            if m:
                for name in _split_names(m.group("names")):
                    entities.append(RawEntity(kind=EntityKind.EXPORT, name=name.split(" as ")[-1].strip(), line=lineno))
                continue

            declared: set = set()
            m = _JS_DECL.match(line)
            if m:
                name = m.group("name")
                declared.add(name)
                kw = m.group("kw")
                exported = bool(m.group("export"))
                kind = {
                    "class": EntityKind.CLASS,
                    "interface": EntityKind.INTERFACE,
                    "type": EntityKind.TYPE,
                    "enum": EntityKind.TYPE,
                }.get(kw, EntityKind.FUNCTION)
                extends: Tuple[str, ...] = ()
                implements: Tuple[str, ...] = ()
                if kind is EntityKind.CLASS:
                    in_class = True
                    h = _JS_HERITAGE.search(line)
                    if h:
                        extends = (h.group("base"),)
                        if h.group("ifaces"):
                            implements = tuple(_split_names(h.group("ifaces")))
                    else:
                        i = _JS_IMPLEMENTS.search(line)
                        if i:
                            implements = tuple(_split_names(i.group("ifaces")))
                elif kind is EntityKind.INTERFACE:
                    h = re.search(r"\bextends\s+([\w.,\s<>]+?)\s*\{", line)
                    if h:
                        extends = tuple(_split_names(h.group(1)))
                nested_function = bool(m.group("indent")) and kind is EntityKind.FUNCTION and not in_class
                scope = EntityScope.LOCAL if nested_function else EntityScope.MODULE
                signature = re.sub(r"\s*\{\s*$", "", stripped)
                entities.append(
                    RawEntity(
                        kind=kind,
                        name=name,
                        scope=scope,
                        line=lineno,
                        is_private=_private(name),
                        metadata=EntityMetadata(
                            signature=signature if kind is not EntityKind.TYPE else None,
                            extends=extends,
                            implements=implements,
                            is_exported=exported,
                            has_type_annotations=":" in signature.partition("(")[2],
                        ),
                    )
                )
                if exported:
                    entities.append(RawEntity(kind=EntityKind.EXPORT, name=name, line=lineno))
            else:
                m = _JS_ARROW.match(line)
                if m:
                    name = m.group("name")
                    declared.add(name)
                    exported = bool(m.group("export"))
                    entities.append(
                        RawEntity(
                            kind=EntityKind.FUNCTION,
                            name=name,
                            scope=EntityScope.LOCAL if m.group("indent") else EntityScope.MODULE,
                            line=lineno,
                            is_private=_private(name),
                            metadata=EntityMetadata(
                                signature=re.sub(r"\s*\{\s*$", "", stripped),
                                is_exported=exported,
                                has_type_annotations=":" in stripped.partition("=")[2].partition("=>")[0],
                            ),
                        )
                    )
                    if exported:
                        entities.append(RawEntity(kind=EntityKind.EXPORT, name=name, line=lineno))
                else:
                    m = _JS_VAR.match(line)
                    if m:
                        name = m.group("name")
                        declared.add(name)
                        entities.append(
                            RawEntity(
                                kind=EntityKind.VARIABLE,
                                name=name,
                                scope=EntityScope.LOCAL if m.group("indent") else EntityScope.MODULE,
                                line=lineno,
                                is_private=_private(name),
                                metadata=EntityMetadata(is_exported=bool(m.group("export"))),
                            )
                        )
                        if m.group("export"):
                            entities.append(RawEntity(kind=EntityKind.EXPORT, name=name, line=lineno))
                    elif in_class:
                        mm = _JS_METHOD.match(line)
                        if mm and mm.group("name") not in _CALL_KEYWORDS:
                            name = mm.group("name")
                            declared.add(name)
                            entities.append(
                                RawEntity(
                                    kind=EntityKind.METHOD,
                                    name=name,
                                    line=lineno,
                                    is_private="private" in mm.group("mods") or _private(name),
                                    metadata=EntityMetadata(signature=re.sub(r"\s*\{\s*$", "", stripped)),
                                )
                            )

            if not line.startswith((" ", "\t")) and line.startswith("}"):
                in_class = False

            if declared:
                for t in _JS_TYPE_REF.finditer(line):
                    entities.append(RawEntity(kind=EntityKind.TYPE_REF, name=t.group("type"), line=lineno))
            entities.extend(self._calls(line, lineno, declared))

        return entities

    def _extract_python(self, chunk: DocumentChunk) -> List[RawEntity]:
        entities: List[RawEntity] = []
        base = self._base_line(chunk)
        def_indent: Optional[int] = None

        for offset, line in enumerate(chunk.content.split("\n")):
            lineno = base + offset
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                continue
            indent = len(line) - len(line.lstrip())
            opens_block = stripped.startswith(("def ", "async def ", "class ", "@"))
            if def_indent is not None and indent <= def_indent and not opens_block:
                def_indent = None

            m = _PY_FROM.match(line)
            if m:
                src = m.group("src")
                imported = _split_names(m.group("names").strip().rstrip("\\"))
                names = tuple(sorted(n.split(" as ")[-1].strip() for n in imported))
                entities.append(
                    RawEntity(kind=EntityKind.IMPORT, name=src, source=src, specifiers=names, line=lineno)
                )
                continue
            m = _PY_IMPORT.match(line)
            if m:
                for mod in _split_names(m.group("mods")):
                    mod = mod.split(" as ")[0].strip()
                    entities.append(RawEntity(kind=EntityKind.IMPORT, name=mod, source=mod, line=lineno))
                continue

            declared: set = set()
            m = _PY_DEF.match(line)
            if m:
                name = m.group("name")
                declared.add(name)
                is_class = m.group("kw") == "class"
                nested = indent > 0
                if is_class:
                    kind = EntityKind.CLASS
                else:
                    kind = EntityKind.METHOD if nested else EntityKind.FUNCTION
                bases: Tuple[str, ...] = ()
                if is_class and m.group("rest").startswith("("):
                    inner = m.group("rest")[1 : m.group("rest").rfind(")")]
                    bases = tuple(b for b in _split_names(inner) if "=" not in b and b != "object")
                signature = stripped.rstrip(":").rstrip()
                entities.append(
                    RawEntity(
                        kind=kind,
                        name=name,
                        line=lineno,
                        is_private=_private(name),
                        metadata=EntityMetadata(
                            signature=signature,
                            extends=bases,
                            is_exported=not nested and not _private(name),
                            has_type_annotations="->" in signature or ":" in signature.partition("(")[2],
                        ),
                    )
                )
                if not is_class:
                    def_indent = indent if def_indent is None else def_indent
            else:
                m = _PY_ASSIGN.match(line)
                if m:
                    name = m.group("name")
                    declared.add(name)
                    if indent == 0:
                        entities.append(
                            RawEntity(
                                kind=EntityKind.VARIABLE,
                                name=name,
                                line=lineno,
                                is_private=_private(name),
                                metadata=EntityMetadata(is_exported=not _private(name)),
                            )
                        )
                    elif def_indent is not None:
                        entities.append(
                            RawEntity(kind=EntityKind.VARIABLE, name=name, scope=EntityScope.LOCAL, line=lineno)
                        )

            if stripped.startswith(("def ", "async def ")):
                for t in _PY_TYPE_REF.finditer(line):
                    entities.append(RawEntity(kind=EntityKind.TYPE_REF, name=t.group("type"), line=lineno))
            entities.extend(self._calls(line, lineno, declared))

        return entities


class RetryingExtractor:
    """
    EntityExtractionPort with bounded retries.

    `extract_or_empty` never raises: a chunk whose extraction keeps failing
    contributes no entities.
    """

    def __init__(self, inner: EntityExtractionPort, policy: RetryPolicy | None = None) -> None:
        self._inner = inner
        self._policy = policy or RetryPolicy()

    @property
    def model_name(self) -> Optional[str]:
        return getattr(self._inner, "model_name", None)

    async def extract(self, chunk: DocumentChunk) -> ExtractionResult:
        try:
            return await call_with_retry(
                lambda: self._inner.extract(chunk), self._policy, label="extract", tag=EXTRACTION
            )
        except Exception as exc:
            raise ExtractionError(
                f"Extraction failed for chunk {chunk.id} after {self._policy.max_attempts} attempts: {exc!r}"
            ) from exc

    async def extract_or_empty(self, chunk: DocumentChunk) -> ExtractionResult:
        try:
            return await self.extract(chunk)
        except ExtractionError as exc:
            logger.warning(f"{EXTRACTION} {exc}")
            return ExtractionResult.empty(model=self.model_name)


__all__ = ["StaticEntityExtractor", "RetryingExtractor"]
