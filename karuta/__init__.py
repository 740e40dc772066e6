#-*- coding: utf-8 -*-

"""
Client engine for the Domino relational query server.

Domino speaks a line-oriented text protocol with XML responses. This package
keeps one connection to the server, runs many paginated queries over it and
exposes the results as plain records for a user interface to display.
"""


from .protocol import KarutaError, NotConnected, TransportFailure, IncompleteFrame, MalformedDocument, ProtocolFailure, EmptyInput
from .connection import Phase, ConnectionState
from .relation import RelationTable, QueryResult
from .wire import QueryAck, TupleBatch, SchemaResponse, RelationSchema, AttributeType, Constraint
from .expressions import split_expressions, split_queries, format_expression, format_text
from .engine import Engine


__all__ = 'Engine', 'Phase', 'ConnectionState', 'RelationTable', 'QueryResult', 'RelationSchema', 'AttributeType', 'Constraint', 'QueryAck', 'TupleBatch', 'SchemaResponse', 'split_expressions', 'split_queries', 'format_expression', 'format_text', 'KarutaError', 'NotConnected', 'TransportFailure', 'IncompleteFrame', 'MalformedDocument', 'ProtocolFailure', 'EmptyInput'

__version__ = '1.0.0'
