"""Log translator — rewrites server console lines through pattern/template rules.

Rule file format, one rule per line::

    Player [a-zA-Z0-9_]+ joined#玩家 $0 加入游戏

The pattern and template are split on the first ``#``.  ``$0`` in the
template is the whole match, ``$1``.. are the capture groups.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

log = logging.getLogger(__name__)

DEFAULT_RULES = (
    ("Player [a-zA-Z0-9_]+ joined", "玩家 $0 加入游戏"),
    (r"Done \(\d+\.\d+s\)!", "启动完成 (耗时 $0 秒)"),
    ("Stopping server", "正在停止服务器"),
    (r"Preparing spawn area: (\d+)%", "生成出生点区域: $1%"),
)

_PLACEHOLDER = re.compile(r"\$(\d+)")


@dataclass(frozen=True)
class TranslationRule:
    pattern: re.Pattern[str]
    template: str

    def apply(self, line: str) -> str | None:
        """Return the rendered template, or None if the pattern doesn't match."""
        match = self.pattern.search(line)
        if match is None:
            return None

        groups = match.re.groups

        def _sub(ph: re.Match[str]) -> str:
            index = int(ph.group(1))
            if index > groups:
                # Unknown group — leave "$7" as written
                return ph.group(0)
            return match.group(index) or ""

        return _PLACEHOLDER.sub(_sub, self.template)


def parse_rules(lines) -> tuple[TranslationRule, ...]:
    """Parse ``pattern#template`` lines into compiled rules, in file order.

    Lines without ``#`` and lines with an empty pattern are skipped.  A
    pattern that fails to compile is dropped with a warning.  When the
    same pattern appears twice the later template wins.
    """
    table: dict[str, str] = {}
    for lineno, raw in enumerate(lines, start=1):
        line = raw.rstrip("\r\n")
        pattern, sep, template = line.partition("#")
        if not sep or not pattern:
            continue
        table[pattern] = template

    rules: list[TranslationRule] = []
    for pattern, template in table.items():
        try:
            compiled = re.compile(pattern)
        except re.error as exc:
            log.warning("Skipping malformed translation rule %r: %s", pattern, exc)
            continue
        rules.append(TranslationRule(compiled, template))
    return tuple(rules)


def write_default_rules(path: str | Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    text = "\n".join(f"{pattern}#{template}" for pattern, template in DEFAULT_RULES)
    path.write_text(text, encoding="utf-8")


def ensure_rule_file(path: str | Path) -> Path:
    """Seed the rule file with the default rules if it doesn't exist yet."""
    path = Path(path)
    if not path.exists():
        log.info("No translation rules at %s — writing defaults", path)
        write_default_rules(path)
    return path


def load_rules(path: str | Path) -> tuple[TranslationRule, ...]:
    path = ensure_rule_file(path)
    with open(path, encoding="utf-8") as f:
        return parse_rules(f)


class Translator:
    """Holds the active rule table and translates one line at a time.

    The table is an immutable tuple.  ``reload`` builds a complete new
    table and publishes it with a single attribute assignment, so readers
    translating concurrently see either the old table or the new one.
    """

    def __init__(
        self,
        rules: tuple[TranslationRule, ...] = (),
        path: str | Path | None = None,
    ) -> None:
        self._rules = tuple(rules)
        self.path = Path(path) if path is not None else None

    @classmethod
    def from_file(cls, path: str | Path) -> Translator:
        return cls(load_rules(path), path=path)

    @property
    def rules(self) -> tuple[TranslationRule, ...]:
        return self._rules

    def translate(self, line: str) -> str:
        for rule in self._rules:
            result = rule.apply(line)
            if result is not None:
                return result
        return line

    def reload(self) -> int:
        """Re-read the rule file and swap in the new table. Returns the rule count."""
        if self.path is None:
            raise RuntimeError("Translator was not loaded from a file")
        rules = load_rules(self.path)
        self._rules = rules
        log.info("Loaded %d translation rules from %s", len(rules), self.path)
        return len(rules)

    def reset_defaults(self) -> int:
        """Restore the default rule file and reload it."""
        if self.path is None:
            raise RuntimeError("Translator was not loaded from a file")
        write_default_rules(self.path)
        return self.reload()
