# (c) Copyright Datacraft, 2026
"""
Filter DSL parser for custom record scopes.

Supports expressions such as:
    user.id == record.created_by
    record.status == "pending" AND record.amount <= 5000
    record.type IN ["truck", "trailer"] OR user.role == "admin"

A bare dotted path on the right-hand side is a field reference; quoted
strings, numbers, true/false and [lists] are literals.
"""
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from .models import (
	Condition, ConditionGroup, ConditionOperator, CombineWith,
	CapabilityConfigurationError, name_of,
)


class FilterSyntaxError(CapabilityConfigurationError):
	"""Raised when filter syntax is invalid."""
	def __init__(self, message: str, line: int = 0, column: int = 0):
		self.line = line
		self.column = column
		super().__init__(f"Line {line}, col {column}: {message}")


@dataclass
class Token:
	"""Lexer token."""
	type: str
	value: str
	line: int
	column: int


class FilterLexer:
	"""Tokenizer for the filter DSL."""

	KEYWORDS = {
		"AND", "OR", "NOT", "IN", "NOT_IN", "CONTAINS", "STARTS_WITH",
		"TRUE", "FALSE",
	}

	OPERATORS = {
		"==": "==",
		"=": "==",
		"!=": "!=",
		"<>": "!=",
		">": ">",
		">=": ">=",
		"<": "<",
		"<=": "<=",
	}

	def __init__(self, text: str):
		self.text = text
		self.pos = 0
		self.line = 1
		self.column = 1
		self.tokens: list[Token] = []

	def tokenize(self) -> list[Token]:
		while self.pos < len(self.text):
			self._skip_whitespace()
			if self.pos >= len(self.text):
				break

			char = self.text[self.pos]

			if char in ('"', "'"):
				self.tokens.append(self._read_string())
				continue

			if char.isdigit() or (char == "-" and self._peek().isdigit()):
				self.tokens.append(self._read_number())
				continue

			# Multi-char operators first
			two_char = self.text[self.pos:self.pos + 2]
			if two_char in self.OPERATORS:
				self.tokens.append(Token("OPERATOR", self.OPERATORS[two_char], self.line, self.column))
				self._advance(2)
				continue
			if char in self.OPERATORS:
				self.tokens.append(Token("OPERATOR", self.OPERATORS[char], self.line, self.column))
				self._advance()
				continue

			if char in "()[],":
				self.tokens.append(Token("PUNCT", char, self.line, self.column))
				self._advance()
				continue

			if char.isalpha() or char == "_":
				self.tokens.append(self._read_identifier())
				continue

			raise FilterSyntaxError(f"Unexpected character: {char}", self.line, self.column)

		return self.tokens

	def _advance(self, count: int = 1):
		for _ in range(count):
			if self.pos < len(self.text):
				if self.text[self.pos] == "\n":
					self.line += 1
					self.column = 1
				else:
					self.column += 1
				self.pos += 1

	def _peek(self, offset: int = 1) -> str:
		pos = self.pos + offset
		return self.text[pos] if pos < len(self.text) else ""

	def _skip_whitespace(self):
		while self.pos < len(self.text) and self.text[self.pos] in " \t\n\r":
			self._advance()

	def _read_string(self) -> Token:
		quote = self.text[self.pos]
		start_line, start_col = self.line, self.column
		self._advance()
		value = ""
		while self.pos < len(self.text) and self.text[self.pos] != quote:
			if self.text[self.pos] == "\\":
				self._advance()
				if self.pos < len(self.text):
					value += self.text[self.pos]
					self._advance()
			else:
				value += self.text[self.pos]
				self._advance()
		if self.pos >= len(self.text):
			raise FilterSyntaxError("Unterminated string", start_line, start_col)
		self._advance()
		return Token("STRING", value, start_line, start_col)

	def _read_number(self) -> Token:
		start_line, start_col = self.line, self.column
		value = self.text[self.pos]
		self._advance()
		while self.pos < len(self.text) and (self.text[self.pos].isdigit() or self.text[self.pos] == "."):
			value += self.text[self.pos]
			self._advance()
		return Token("NUMBER", value, start_line, start_col)

	def _read_identifier(self) -> Token:
		start_line, start_col = self.line, self.column
		value = ""
		while self.pos < len(self.text) and (self.text[self.pos].isalnum() or self.text[self.pos] in "_."):
			value += self.text[self.pos]
			self._advance()
		token_type = "KEYWORD" if value.upper() in self.KEYWORDS else "IDENTIFIER"
		return Token(token_type, value.upper() if token_type == "KEYWORD" else value, start_line, start_col)


class FilterParser:
	"""
	Parser for the filter DSL.

	Grammar:
		filter     := condition ((AND | OR) condition)*
		condition  := path operator value
		operator   := '==' | '!=' | '>' | '>=' | '<' | '<=' | IN | NOT IN | NOT_IN
		              | CONTAINS | STARTS_WITH
		value      := STRING | NUMBER | TRUE | FALSE | '[' value_list ']' | path

	AND and OR may not be mixed in one filter.
	"""

	OPERATOR_MAP = {
		"==": ConditionOperator.EQUALS,
		"!=": ConditionOperator.NOT_EQUALS,
		">": ConditionOperator.GREATER_THAN,
		">=": ConditionOperator.GREATER_THAN_OR_EQUAL,
		"<": ConditionOperator.LESS_THAN,
		"<=": ConditionOperator.LESS_THAN_OR_EQUAL,
		"IN": ConditionOperator.IN,
		"NOT_IN": ConditionOperator.NOT_IN,
		"CONTAINS": ConditionOperator.CONTAINS,
		"STARTS_WITH": ConditionOperator.STARTS_WITH,
	}

	def __init__(self):
		self.tokens: list[Token] = []
		self.pos = 0

	def parse(self, text: str) -> ConditionGroup:
		"""Parse filter text into a ConditionGroup."""
		self.tokens = FilterLexer(text).tokenize()
		self.pos = 0

		if not self.tokens:
			raise FilterSyntaxError("Empty filter", 1, 1)

		conditions = [self._parse_condition()]
		logic: str | None = None

		while self._current():
			token = self._current()
			if token.type != "KEYWORD" or token.value not in ("AND", "OR"):
				raise FilterSyntaxError(f"Expected AND or OR, got {token.value!r}", token.line, token.column)
			if logic and token.value != logic:
				raise FilterSyntaxError("Cannot mix AND and OR in one filter", token.line, token.column)
			logic = token.value
			self._advance()
			conditions.append(self._parse_condition())

		return ConditionGroup(
			conditions=tuple(conditions),
			combine_with=CombineWith(logic or "AND"),
		)

	def _current(self) -> Token | None:
		return self.tokens[self.pos] if self.pos < len(self.tokens) else None

	def _advance(self) -> Token | None:
		token = self._current()
		self.pos += 1
		return token

	def _error(self, message: str) -> FilterSyntaxError:
		token = self._current()
		line, col = (token.line, token.column) if token else (0, 0)
		return FilterSyntaxError(message, line, col)

	def _parse_condition(self) -> Condition:
		token = self._current()
		if not token or token.type != "IDENTIFIER":
			raise self._error("Expected field path")
		path = token.value
		self._advance()

		operator = self._parse_operator()
		value, is_reference = self._parse_value()

		return Condition(field=path, operator=operator, value=value, is_reference=is_reference)

	def _parse_operator(self) -> ConditionOperator:
		token = self._current()
		if not token:
			raise self._error("Expected operator")

		if token.type == "KEYWORD" and token.value == "NOT":
			self._advance()
			following = self._current()
			if not following or following.type != "KEYWORD" or following.value != "IN":
				raise self._error("Expected IN after NOT")
			self._advance()
			return ConditionOperator.NOT_IN

		if token.type in ("OPERATOR", "KEYWORD") and token.value in self.OPERATOR_MAP:
			self._advance()
			return self.OPERATOR_MAP[token.value]

		raise FilterSyntaxError(f"Unknown operator: {token.value}", token.line, token.column)

	def _parse_value(self) -> tuple[Any, bool]:
		token = self._current()
		if not token:
			raise self._error("Expected value")

		if token.type == "STRING":
			self._advance()
			return token.value, False

		if token.type == "NUMBER":
			self._advance()
			return token.value, False

		if token.type == "KEYWORD" and token.value in ("TRUE", "FALSE"):
			self._advance()
			return token.value.lower(), False

		if token.type == "PUNCT" and token.value == "[":
			return self._parse_list(), False

		if token.type == "IDENTIFIER":
			self._advance()
			return token.value, True

		raise FilterSyntaxError(f"Unexpected value: {token.value}", token.line, token.column)

	def _parse_list(self) -> tuple:
		"""Parse a list value: [item1, item2, ...]"""
		self._advance()
		items = []

		while self._current() and not (self._current().type == "PUNCT" and self._current().value == "]"):
			value, is_reference = self._parse_value()
			if is_reference:
				raise self._error("Field references are not allowed inside lists")
			items.append(value)

			if self._current() and self._current().type == "PUNCT" and self._current().value == ",":
				self._advance()

		if not self._current():
			raise self._error("Expected ']'")
		self._advance()

		return tuple(items)


@lru_cache(maxsize=512)
def parse_filter(text: str) -> ConditionGroup:
	"""Parse (and memoize) a filter expression."""
	return FilterParser().parse(text)


def _quote(value: Any) -> str:
	escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
	return f'"{escaped}"'


def to_dsl(group: ConditionGroup) -> str:
	"""Convert a ConditionGroup back to filter text."""
	op_map = {
		"in": "IN", "not_in": "NOT_IN",
		"contains": "CONTAINS", "starts_with": "STARTS_WITH",
	}
	parts = []
	for cond in group.conditions:
		op = name_of(cond.operator)
		val = cond.value
		if cond.is_reference:
			val_str = str(val)
		elif isinstance(val, (list, tuple)):
			val_str = "[" + ", ".join(_quote(v) for v in val) + "]"
		else:
			val_str = _quote(val)
		parts.append(f"{cond.field} {op_map.get(op, op)} {val_str}")
	return f" {name_of(group.combine_with)} ".join(parts)
