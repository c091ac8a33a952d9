"""
=============================================================================
FORMRELAY - RULE COMPILER
=============================================================================
Compiles rules written in the canonical (ECMAScript-compatible) regex
dialect into matchers with identical verdicts on the server.

The browser builds ``new RegExp(pattern, flags)`` from the exported rule;
this module builds a Python ``re`` pattern from the very same text. The
translation spells out every construct whose meaning differs between the two
engines:

- ``$`` without ``m`` only matches at the very end of the input
- ``^``/``$`` with ``m`` honour all four ECMAScript line terminators
- ``.`` excludes ``\\n \\r \\u2028 \\u2029`` (everything with ``s``)
- ``\\d \\w \\b`` are ASCII-only, ``\\s`` is the ECMAScript whitespace set
- ``\\p{L}``/``\\p{M}``/... expand to code-point ranges from the Unicode
  database (``u`` flag required)
- ``(?<name>...)`` and ``\\k<name>`` become Python named groups
- back-references to a group that did not participate match the empty string
- with ``i`` but not ``u``, no non-ASCII character folds onto an ASCII letter

Constructs that only one engine understands are rejected with
RuleSyntaxError so they surface when the document is loaded.

Usage:
    from formrelay.core.rules import compile_rule

    matcher = compile_rule(r"^\\+?\\d{7,15}$")
    matcher.test("+15551234567")  # True
=============================================================================
"""
from __future__ import annotations

import re
import sys
import unicodedata
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from formrelay.core.errors import RuleSyntaxError

# Order used when flags are exported back to the browser.
FLAG_ORDER = "gimsu"
SUPPORTED_FLAGS = frozenset(FLAG_ORDER)

# ECMAScript WhiteSpace + LineTerminator, i.e. what \s and String.trim() use.
JS_WHITESPACE = (
    "\t\n\v\f\r \u00a0\u1680"
    + "".join(chr(cp) for cp in range(0x2000, 0x200B))
    + "\u2028\u2029\u202f\u205f\u3000\ufeff"
)
_WS_CLASS = "\\t\\n\\v\\f\\r \\u00a0\\u1680\\u2000-\\u200a\\u2028\\u2029\\u202f\\u205f\\u3000\\ufeff"
_LINE_TERMINATORS = "\\n\\r\\u2028\\u2029"
_WORD_CLASS = "A-Za-z0-9_"
_DIGIT_CLASS = "0-9"

_WORD_BOUNDARY = (
    "(?:(?<=[A-Za-z0-9_])(?![A-Za-z0-9_])|(?<![A-Za-z0-9_])(?=[A-Za-z0-9_]))"
)
_NOT_WORD_BOUNDARY = (
    "(?:(?<=[A-Za-z0-9_])(?=[A-Za-z0-9_])|(?<![A-Za-z0-9_])(?![A-Za-z0-9_]))"
)

_SYNTAX_CHARACTERS = frozenset("^$\\.*+?()[]{}|/")

# Characters Python folds onto ASCII letters (and those letters) under IGNORECASE.
_FOLD_SENSITIVE = "\u017f\u212a\u0131\u0130sSkKiI"

_LEGACY_DELIMITED = re.compile(r"^/(.*)/([a-z]*)$", re.DOTALL | re.IGNORECASE)
_GROUP_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

_PROPERTY_ALIASES: Dict[str, str] = {
    "Letter": "L",
    "Cased_Letter": "LC",
    "Uppercase_Letter": "Lu",
    "Lowercase_Letter": "Ll",
    "Titlecase_Letter": "Lt",
    "Modifier_Letter": "Lm",
    "Other_Letter": "Lo",
    "Mark": "M",
    "Combining_Mark": "M",
    "Nonspacing_Mark": "Mn",
    "Spacing_Mark": "Mc",
    "Enclosing_Mark": "Me",
    "Number": "N",
    "Decimal_Number": "Nd",
    "Letter_Number": "Nl",
    "Other_Number": "No",
    "Punctuation": "P",
    "Symbol": "S",
    "Separator": "Z",
    "Space_Separator": "Zs",
}
_GENERAL_CATEGORIES = frozenset(
    "L LC Lu Ll Lt Lm Lo M Mn Mc Me N Nd Nl No P Pc Pd Ps Pe Pi Pf Po "
    "S Sm Sc Sk So Z Zs Zl Zp".split()
)


@dataclass(frozen=True)
class RuleSpec:
    """A pattern in the canonical dialect plus its flag set."""

    pattern: str
    flags: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def parse(cls, pattern: str, flags: Iterable[str] = "") -> "RuleSpec":
        """Build a spec, unwrapping the legacy ``/body/flags`` form if present."""
        if not isinstance(pattern, str) or not pattern:
            raise RuleSyntaxError("rule pattern must be a non-empty string")
        flag_set = frozenset(flags or "")
        legacy = _LEGACY_DELIMITED.match(pattern)
        if legacy:
            pattern = legacy.group(1)
            if legacy.group(2):
                flag_set = frozenset(legacy.group(2).lower())
        unknown = flag_set - SUPPORTED_FLAGS
        if unknown:
            raise RuleSyntaxError(
                f"unsupported regex flag(s) {''.join(sorted(unknown))!r} in /{pattern}/"
            )
        return cls(pattern=pattern, flags=flag_set)

    @property
    def flag_string(self) -> str:
        return "".join(f for f in FLAG_ORDER if f in self.flags)

    def export(self) -> Dict[str, str]:
        """Rule as handed to the browser: ``new RegExp(pattern, flags)``."""
        return {"pattern": self.pattern, "flags": self.flag_string}


class Matcher:
    """Compiled rule exposing ECMAScript ``RegExp.prototype.test`` semantics."""

    def __init__(self, spec: RuleSpec, regex: "re.Pattern[str]"):
        self.spec = spec
        self._regex = regex

    @property
    def python_pattern(self) -> str:
        return self._regex.pattern

    def test(self, value: Optional[str]) -> bool:
        return self._regex.search(value or "") is not None

    def __repr__(self) -> str:
        return f"Matcher(/{self.spec.pattern}/{self.spec.flag_string})"


# Fallback rules, used when the document leaves a pattern out.
EMAIL_FALLBACK = RuleSpec(r"^\S+@\S+\.\S+$")
PHONE_FALLBACK = RuleSpec(r"^\+?\d{7,15}$")
URL_FALLBACK = RuleSpec(
    r"(?:https?:\/\/|www\.)\S+|(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+(?:[a-z]{2,}|xn--[a-z0-9-]{2,})",
    frozenset("i"),
)
# Rules with no configuration knob, exported so the browser never hard-codes them.
REQUIRED_RULE = RuleSpec(r"\S")
NAME_RULE = RuleSpec(r"^[\p{L}\p{M}'\-.\s]{2,}$", frozenset("u"))


def compile_rule(pattern: str, flags: Iterable[str] = "") -> Matcher:
    """Compile ``pattern``/``flags`` (canonical dialect) into a :class:`Matcher`."""
    return compile_spec(RuleSpec.parse(pattern, flags))


@lru_cache(maxsize=256)
def compile_spec(spec: RuleSpec) -> Matcher:
    source = translate(spec)
    # Atoms of non-u patterns were patched where Python folds differently.
    py_flags = re.IGNORECASE if "i" in spec.flags else 0
    try:
        regex = re.compile(source, py_flags)
    except re.error as exc:
        raise RuleSyntaxError(
            f"pattern /{spec.pattern}/{spec.flag_string} does not compile: {exc}"
        ) from exc
    return Matcher(spec, regex)


def resolve_rule(
    pattern: Optional[str], flags: Optional[str], fallback: RuleSpec
) -> RuleSpec:
    """Configured rule when a pattern is given, ``fallback`` otherwise.

    ``flags=None`` means the document did not set flags at all, in which case
    the fallback's flags still apply to the configured pattern.
    """
    if not pattern:
        return fallback
    return RuleSpec.parse(pattern, fallback.flags if flags is None else flags)


def translate(spec: RuleSpec) -> str:
    """Translate canonical pattern text into an equivalent Python pattern."""
    return _Translator(spec).run()


class _Translator:
    def __init__(self, spec: RuleSpec):
        self.src = spec.pattern
        self.unicode = "u" in spec.flags
        self.multiline = "m" in spec.flags
        self.dotall = "s" in spec.flags
        self.pos = 0
        self.out: List[str] = []
        self.in_class = False
        self.class_start = 0
        self.class_negated = False
        self.after_quantifier = False
        # Without u, ECMAScript case folding never maps a non-ASCII character
        # onto an ASCII one; Python's IGNORECASE does.
        self.ascii_fold = "i" in spec.flags and not self.unicode

    def fail(self, reason: str) -> RuleSyntaxError:
        return RuleSyntaxError(f"{reason} at offset {self.pos} in /{self.src}/")

    def run(self) -> str:
        while self.pos < len(self.src):
            char = self.src[self.pos]
            if self.in_class:
                self._class_char(char)
            else:
                self._char(char)
        if self.in_class:
            raise self.fail("unterminated character class")
        return "".join(self.out)

    def _char(self, char: str) -> None:
        quantifier = False
        if char == "\\":
            letter = self.src[self.pos + 1:self.pos + 2]
            escaped = self._escape()
            if letter not in ("b", "B", "k") and not (letter.isdigit() and letter != "0"):
                escaped = self._fold_atom(escaped)
            self.out.append(escaped)
            self.after_quantifier = False
            return
        if char == "[":
            self.pos += 1
            self._open_class()
        elif char == "(":
            self.pos += 1
            self.out.append(self._group())
        elif char == "^":
            self.pos += 1
            self.out.append(
                "(?:(?<=[" + _LINE_TERMINATORS + "])|\\A)" if self.multiline else "\\A"
            )
        elif char == "$":
            self.pos += 1
            self.out.append(
                "(?=[" + _LINE_TERMINATORS + "]|\\Z)" if self.multiline else "\\Z"
            )
        elif char == ".":
            self.pos += 1
            self.out.append("[\\s\\S]" if self.dotall else "[^" + _LINE_TERMINATORS + "]")
        elif char in "*+?":
            if char == "+" and self.after_quantifier:
                raise self.fail("possessive quantifiers are not portable")
            self.pos += 1
            self.out.append(char)
            quantifier = True
        elif char == "{":
            self.pos += 1
            closing = self.src.find("}", self.pos)
            body = self.src[self.pos:closing] if closing != -1 else ""
            if closing != -1 and re.fullmatch(r"\d+(?:,\d*)?", body):
                self.out.append("{" + body + "}")
                self.pos = closing + 1
                quantifier = True
            elif self.unicode:
                raise self.fail("lone '{' is not allowed with the u flag")
            else:
                self.out.append("\\{")
        elif char == "}":
            if self.unicode:
                raise self.fail("lone '}' is not allowed with the u flag")
            self.pos += 1
            self.out.append("\\}")
        else:
            self.pos += 1
            self.out.append(self._fold_atom(char) if char.isalpha() else char)
        self.after_quantifier = quantifier

    def _open_class(self) -> None:
        if self.src.startswith("]", self.pos):
            # ECMAScript [] never matches
            self.pos += 1
            self.out.append("(?!)")
            return
        if self.src.startswith("^]", self.pos):
            self.pos += 2
            self.out.append("[\\s\\S]")
            return
        self.class_start = len(self.out)
        self.class_negated = self.src.startswith("^", self.pos)
        self.out.append("[")
        if self.class_negated:
            self.pos += 1
            self.out.append("^")
        self.in_class = True

    def _class_char(self, char: str) -> None:
        if char == "\\":
            self.out.append(self._escape())
            return
        self.pos += 1
        if char == "]":
            self.in_class = False
            self.out.append("]")
            self._close_class()
        elif char in "[&~|":
            self.out.append("\\" + char)
        else:
            self.out.append(char)

    def _close_class(self) -> None:
        text = "".join(self.out[self.class_start:])
        if self.class_negated:
            folded = self._fold_atom("[" + text[2:], negated=True)
        else:
            folded = self._fold_atom(text)
        self.out[self.class_start:] = [folded]

    def _boundary(self, assertion: str) -> str:
        return "(?-i:" + assertion + ")" if self.ascii_fold else assertion

    def _fold_atom(self, atom: str, negated: bool = False) -> str:
        """Case-insensitive single-character ``atom`` with ECMAScript non-u folding.

        ``atom`` is the positive set; ``negated`` inverts it. Only the
        characters on which Python's folding and ECMAScript's can disagree
        are checked, and the atom is patched to accept or refuse exactly those.
        """
        if not self.ascii_fold:
            return atom
        emitted = "[^" + atom[1:] if negated else atom
        try:
            positive = re.compile(atom)
            python_side = re.compile(emitted, re.IGNORECASE)
        except re.error:
            return emitted
        refuse, accept = [], []
        for char in _FOLD_SENSITIVE:
            in_set = bool(positive.fullmatch(char)) or (
                char.isascii() and bool(positive.fullmatch(char.swapcase()))
            )
            expected = in_set != negated
            actual = bool(python_side.fullmatch(char))
            if actual and not expected:
                refuse.append(char)
            elif expected and not actual:
                accept.append(char)
        if not refuse and not accept:
            return emitted
        patched = emitted
        if refuse:
            patched = "(?!(?-i:[" + "".join(refuse) + "]))" + patched
        if accept:
            patched = "(?-i:[" + "".join(accept) + "])|" + patched
        return "(?:" + patched + ")"

    def _group(self) -> str:
        if not self.src.startswith("?", self.pos):
            return "("
        rest = self.src[self.pos + 1:]
        if rest.startswith((":", "=", "!")):
            self.pos += 2
            return "(?" + rest[0]
        if rest.startswith(("<=", "<!")):
            self.pos += 3
            return "(?" + rest[:2]
        if rest.startswith("<"):
            name = _GROUP_NAME.match(rest, 1)
            if not name or not rest.startswith(">", name.end()):
                raise self.fail("malformed named group")
            self.pos += 1 + name.end() + 1
            return "(?P<" + name.group() + ">"
        raise self.fail("group syntax '(?" + rest[:1] + "' is not portable")

    def _escape(self) -> str:
        self.pos += 1
        if self.pos >= len(self.src):
            raise self.fail("pattern ends with a lone backslash")
        char = self.src[self.pos]
        self.pos += 1

        if char in "pP":
            return self._property(negated=char == "P")
        if char in "dws":
            body = {"d": _DIGIT_CLASS, "w": _WORD_CLASS, "s": _WS_CLASS}[char]
            return body if self.in_class else "[" + body + "]"
        if char in "DWS":
            if self.in_class:
                raise self.fail(f"\\{char} inside a class is not portable")
            body = {"D": _DIGIT_CLASS, "W": _WORD_CLASS, "S": _WS_CLASS}[char]
            return "[^" + body + "]"
        if char == "b":
            return "\\x08" if self.in_class else self._boundary(_WORD_BOUNDARY)
        if char == "B":
            if self.in_class:
                raise self.fail("\\B inside a class")
            return self._boundary(_NOT_WORD_BOUNDARY)
        if char == "k":
            name = _GROUP_NAME.match(self.src, self.pos + 1)
            if (
                self.in_class
                or not self.src.startswith("<", self.pos)
                or not name
                or not self.src.startswith(">", name.end())
            ):
                raise self.fail("malformed named back-reference")
            self.pos = name.end() + 1
            # A group that did not participate matches the empty string.
            return "(?(" + name.group() + ")(?P=" + name.group() + "))"
        if char == "u":
            return self._unicode_escape()
        if char == "x":
            digits = self.src[self.pos:self.pos + 2]
            if not re.fullmatch(r"[0-9A-Fa-f]{2}", digits):
                raise self.fail("malformed \\x escape")
            self.pos += 2
            return "\\x" + digits
        if char == "c":
            letter = self.src[self.pos:self.pos + 1]
            if not letter.isascii() or not letter.isalpha():
                raise self.fail("malformed \\c escape")
            self.pos += 1
            return "\\x%02x" % (ord(letter) % 32)
        if char in "nrtfv":
            return "\\" + char
        if char == "0" and not self.src[self.pos:self.pos + 1].isdigit():
            return "\\x00"
        if char.isdigit():
            if self.in_class:
                raise self.fail("back-reference inside a class")
            digits = char
            while self.pos < len(self.src) and self.src[self.pos].isdigit():
                digits += self.src[self.pos]
                self.pos += 1
            return "(?(" + digits + ")\\" + digits + ")"
        if char.isascii() and char.isalpha():
            raise self.fail(f"escape \\{char} is not portable")
        if self.unicode and char not in _SYNTAX_CHARACTERS and not (
            self.in_class and char == "-"
        ):
            raise self.fail(f"identity escape \\{char} is invalid with the u flag")
        if char == "/":
            return "/"
        return "\\" + char

    def _unicode_escape(self) -> str:
        if self.src.startswith("{", self.pos):
            if not self.unicode:
                raise self.fail("\\u{...} requires the u flag")
            closing = self.src.find("}", self.pos)
            digits = self.src[self.pos + 1:closing] if closing != -1 else ""
            if not re.fullmatch(r"[0-9A-Fa-f]{1,6}", digits) or int(digits, 16) > sys.maxunicode:
                raise self.fail("malformed \\u{...} escape")
            self.pos = closing + 1
            return "\\U%08x" % int(digits, 16)
        digits = self.src[self.pos:self.pos + 4]
        if not re.fullmatch(r"[0-9A-Fa-f]{4}", digits):
            raise self.fail("malformed \\u escape")
        self.pos += 4
        return "\\u" + digits

    def _property(self, negated: bool) -> str:
        if not self.unicode:
            raise self.fail("\\p{...} requires the u flag")
        closing = self.src.find("}", self.pos)
        if not self.src.startswith("{", self.pos) or closing == -1:
            raise self.fail("malformed property escape")
        name = self.src[self.pos + 1:closing]
        self.pos = closing + 1
        body = property_class(_canonical_property(name, self))
        if self.in_class:
            if negated:
                raise self.fail("negated property escape inside a class")
            return body
        return ("[^" if negated else "[") + body + "]"


def _canonical_property(name: str, translator: _Translator) -> str:
    key = name
    for prefix in ("General_Category=", "gc="):
        if key.startswith(prefix):
            key = key[len(prefix):]
    key = _PROPERTY_ALIASES.get(key, key)
    if key not in _GENERAL_CATEGORIES:
        raise translator.fail(f"unsupported Unicode property {name!r}")
    return key


@lru_cache(maxsize=None)
def property_class(category: str) -> str:
    """Character-class body covering every code point of ``category``."""
    if category == "LC":
        wanted: Tuple[str, ...] = ("Lu", "Ll", "Lt")
    else:
        wanted = (category,)

    ranges: List[Tuple[int, int]] = []
    start = None
    for cp in range(sys.maxunicode + 1):
        hit = unicodedata.category(chr(cp)).startswith(wanted)
        if hit and start is None:
            start = cp
        elif not hit and start is not None:
            ranges.append((start, cp - 1))
            start = None
    if start is not None:
        ranges.append((start, sys.maxunicode))

    parts = []
    for low, high in ranges:
        if low == high:
            parts.append("\\U%08x" % low)
        else:
            parts.append("\\U%08x-\\U%08x" % (low, high))
    return "".join(parts)


def js_trim(value: Optional[str]) -> str:
    """``String.prototype.trim`` equivalent."""
    return (value or "").strip(JS_WHITESPACE)
