#!/usr/bin/python3.11
#-*- coding: utf-8 -*-


from logging import getLogger
log = getLogger(__name__)


__all__ = 'RelationTable', 'QueryResult', 'table_columns', 'table_rows', 'apply_batch'


from collections import namedtuple
from uuid import uuid4


class RelationTable(namedtuple('RelationTable', 'columns rows')):
	"Rows of cell strings under a fixed tuple of column names."

	__slots__ = ()

	@property
	def row_count(self):
		return len(self.rows)

	@property
	def column_count(self):
		return len(self.columns)

	def to_tsv(self):
		"Tab-separated text with a header line, one line per row."
		lines = ['\t'.join(self.columns)]
		lines.extend('\t'.join(_row) for _row in self.rows)
		return '\n'.join(lines) + '\n'


class QueryResult(namedtuple('QueryResult', 'id query session_id table has_more_rows is_loading error_message start_time execution_time')):
	"""
	State of one submitted query. Records are never changed in place; handlers
	build a new record with `_replace` and store it under the same id.
	"""

	__slots__ = ()

	@classmethod
	def new(cls, query):
		return cls(uuid4().hex, query, None, None, False, False, None, None, None)

	@property
	def has_session(self):
		return self.session_id is not None


reserved_key = 'meta'


def table_columns(tuples):
	"Sorted attribute names of the first tuple, without the reserved `meta` key."
	return tuple(sorted(_key for _key in tuples[0].keys() if _key != reserved_key))


def table_rows(columns, tuples):
	"Map tuples onto a column order. Missing attributes become empty cells."
	return tuple(tuple(_tuple.get(_column, '') for _column in columns) for _tuple in tuples)


def apply_batch(result, tuples, batch_size, now):
	"Return `result` with one successful batch of tuples folded in."

	changes = {'is_loading':False, 'error_message':None, 'has_more_rows':len(tuples) >= batch_size}

	table = result.table
	if table is not None:
		changes['table'] = RelationTable(table.columns, table.rows + table_rows(table.columns, tuples))
	elif tuples:
		columns = table_columns(tuples)
		changes['table'] = RelationTable(columns, table_rows(columns, tuples))

	if result.execution_time is None and result.start_time is not None:
		changes['execution_time'] = now - result.start_time

	return result._replace(**changes)
