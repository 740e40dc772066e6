#!/usr/bin/python3.11
#-*- coding: utf-8 -*-

"""
Decoding of server response documents.

Every response is rooted at `<response>` and carries a `<status>` (`ok` or an
error code) and, on failure, a `<message>`. Three shapes exist:

	<response><status>ok</status><session>s1</session></response>

	<response><status>ok</status>
		<tuple><attribute name="id">1</attribute><attribute name="name">Ann</attribute></tuple>
	</response>

	<response><status>ok</status>
		<relation name="employees" cardinality="finite">
			<attribute name="id" type="integer"/>
			<constraints><constraint attribute="id">primary key</constraint></constraints>
			<provenance>base relation</provenance>
		</relation>
	</response>

Each decoder is a plain function returning a named tuple. Optional elements
that are missing come back as None (or empty lists), never as exceptions.
"""


from logging import getLogger, basicConfig, DEBUG
log = getLogger(__name__)

if __name__ == '__main__':
	basicConfig(level=DEBUG, format='%(asctime)-8s %(levelname)-8s %(name)-32s %(message)s')


__all__ = 'QueryAck', 'TupleBatch', 'SchemaResponse', 'RelationSchema', 'AttributeType', 'Constraint', 'decode_query_ack', 'decode_tuple_batch', 'decode_schema', 'expect_ok'


from collections import namedtuple
from xml.etree.ElementTree import ParseError
from defusedxml import DefusedXmlException
from defusedxml.ElementTree import fromstring

if __name__ == '__main__':
	from protocol import MalformedDocument, ProtocolFailure
else:
	from .protocol import MalformedDocument, ProtocolFailure


QueryAck = namedtuple('QueryAck', 'status session_id message')
TupleBatch = namedtuple('TupleBatch', 'status tuples message')
SchemaResponse = namedtuple('SchemaResponse', 'status relations message')

RelationSchema = namedtuple('RelationSchema', 'name cardinality attributes constraints provenance')
AttributeType = namedtuple('AttributeType', 'name type')
Constraint = namedtuple('Constraint', 'attribute constraint')


def parse_document(xml):
	"Parse response text into an element tree, raising `MalformedDocument` on bad input."

	try:
		return fromstring(xml.strip())
	except (ParseError, DefusedXmlException) as error:
		log.error(f"Error while parsing response document: {error}")
		log.debug("\n" + '\n'.join([str(_n + 1) + ': ' + _line for (_n, _line) in enumerate(xml.strip().split('\n'))]))
		raise MalformedDocument(f"Failed to parse response: {error}")


def child_text(element, tag):
	"Trimmed text of the first direct child named `tag`, None if there is no such child."
	child = element.find(tag)
	if child is None:
		return None
	return (child.text or '').strip()


def common_fields(root):
	"The `status` and `message` fields shared by all shapes."
	return child_text(root, 'status') or '', child_text(root, 'message')


def decode_query_ack(xml):
	root = parse_document(xml)
	status, message = common_fields(root)
	return QueryAck(status, child_text(root, 'session') or None, message)


def decode_tuple_batch(xml):
	root = parse_document(xml)
	status, message = common_fields(root)

	tuples = []
	for tuple_element in root.iter('tuple'):
		values = {}
		for attribute in tuple_element.findall('attribute'):
			name = attribute.get('name')
			if name is None:
				log.warning("Tuple attribute without a name skipped.")
				continue
			values[name] = attribute.text or ''
		tuples.append(values)

	return TupleBatch(status, tuples, message)


def _outside(element, skip):
	"Yield descendants of `element`, not descending into subtrees tagged `skip`."
	for child in element:
		if child.tag == skip:
			continue
		yield child
		yield from _outside(child, skip)


def decode_relation(relation):
	attributes = [AttributeType(_e.get('name', ''), _e.get('type', '')) for _e in _outside(relation, 'constraints') if _e.tag == 'attribute']

	constraints = []
	for block in relation.iter('constraints'):
		for constraint in block.iter('constraint'):
			constraints.append(Constraint(constraint.get('attribute', ''), (constraint.text or '').strip()))

	provenance = relation.find('provenance')
	if provenance is not None:
		provenance = (provenance.text or '').strip()

	return RelationSchema(relation.get('name', ''), relation.get('cardinality', ''), attributes, constraints, provenance)


def decode_schema(xml):
	root = parse_document(xml)
	status, message = common_fields(root)
	return SchemaResponse(status, [decode_relation(_relation) for _relation in root.iter('relation')], message)


def expect_ok(response):
	"Raise `ProtocolFailure` unless the response status is `ok`."
	if response.status == 'ok':
		return response
	if response.message:
		raise ProtocolFailure(response.message)
	elif response.status:
		raise ProtocolFailure(f"Server returned status `{response.status}`")
	else:
		raise ProtocolFailure("Response carried no status")


if __debug__ and __name__ == '__main__':
	print(decode_query_ack('<response><status>ok</status><session>s42</session></response>'))
	print(decode_query_ack('<response><status>error</status><message>unknown relation: employes</message></response>'))
	print(decode_tuple_batch('<response><status>ok</status><tuple><attribute name="id">1</attribute><attribute name="name"> Ann </attribute></tuple></response>'))
	print(decode_schema('''
		<response>
			<status>ok</status>
			<relation name="employees" cardinality="finite">
				<attribute name="id" type="integer"/>
				<attribute name="name" type="string"/>
				<constraints><constraint attribute="id"> primary key </constraint></constraints>
				<provenance> base relation </provenance>
			</relation>
		</response>
	'''))
	try:
		decode_schema('<response><status>ok</status>')
	except MalformedDocument as error:
		print("expected error:", error)
