#!/usr/bin/python3.11
#-*- coding: utf-8 -*-

"""
Text helpers for the query editor: splitting a buffer that holds several
bracketed expressions into separate queries, and normalizing the spacing of
an expression.

Query expressions look like `{join, {scan, employees}, {scan, departments}, dept_id}`.
Strings are double-quoted, and a backslash makes the next character literal.
"""


from logging import getLogger, basicConfig, DEBUG
log = getLogger(__name__)

if __name__ == '__main__':
	basicConfig(level=DEBUG, format='%(asctime)-8s %(levelname)-8s %(name)-32s %(message)s')


__all__ = 'split_expressions', 'split_queries', 'format_expression', 'format_text', 'scan_query', 'EXAMPLES'


EXAMPLES = {
	"Scan Employees": '{scan, employees}',
	"Scan Departments": '{scan, departments}',
	"Take 25 Naturals": '{take, {scan, naturals}, 25}',
	"Join Example": '{join, {scan, employees}, {scan, departments}, dept_id}',
}


def split_expressions(line):
	"Split one line into its top-level bracketed expressions, e.g. `{a}{b, {c}}` -> [`{a}`, `{b, {c}}`]."

	expressions = []
	current = []
	depth = 0
	in_string = False
	escape = False

	for ch in line:
		if escape:
			current.append(ch)
			escape = False
			continue

		if ch == '\\':
			escape = True
			current.append(ch)
			continue

		if ch == '"':
			in_string = not in_string
			current.append(ch)
			continue

		if in_string:
			current.append(ch)
			continue

		current.append(ch)
		if ch == '{':
			depth += 1
		elif ch == '}':
			depth -= 1
			if depth == 0:
				expression = ''.join(current).strip()
				if expression:
					expressions.append(expression)
				current = []

	rest = ''.join(current).strip()
	if rest:
		expressions.append(rest)

	return expressions if expressions else [line]


def split_queries(text):
	"Split a whole editor buffer into queries: one or more per non-blank line."
	queries = []
	for line in text.split('\n'):
		line = line.strip()
		if line:
			queries.extend(split_expressions(line))
	return queries


def format_expression(expression):
	"Canonical spacing: one space after each comma, one before a nested opening bracket, no runs of spaces."

	result = []
	in_string = False
	escape = False

	for ch in expression:
		last = result[-1] if result else None

		if escape:
			result.append(ch)
			escape = False
			continue

		if ch == '\\':
			escape = True
			result.append(ch)
			continue

		if ch == '"':
			in_string = not in_string
			result.append(ch)
			continue

		if in_string:
			result.append(ch)
		elif ch == '{':
			if last not in (None, '{', ',', ' '):
				result.append(' ')
			result.append(ch)
		elif ch == ',':
			result.append(ch)
			result.append(' ')
		elif ch == ' ':
			if last not in (' ', ',', '{'):
				result.append(ch)
		else:
			result.append(ch)

	return ''.join(result).strip()


def format_text(text):
	"Format every non-empty line of a buffer; blank lines are dropped."
	return '\n'.join(format_expression(_line.strip()) for _line in text.split('\n') if _line.strip())


def scan_query(relation_name):
	"Query that reads a whole relation."
	return f'{{scan, {relation_name}}}'


if __debug__ and __name__ == '__main__':
	buffer = '''
		{scan, employees}{take, {scan, naturals}, 25}
		{select, {scan, employees}, "name = \\"{x}\\""}
		{join,{scan,employees},{scan,departments},dept_id}
	'''

	for query in split_queries(buffer):
		log.info(f"query: {query}")
		log.info(f"  formatted: {format_expression(query)}")

	print(format_text(buffer))
