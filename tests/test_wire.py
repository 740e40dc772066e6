"""Unit tests for response document decoding."""
import pytest

from karuta.protocol import MalformedDocument, ProtocolFailure
from karuta.wire import (
    decode_query_ack,
    decode_tuple_batch,
    decode_schema,
    expect_ok,
    AttributeType,
    Constraint,
)


class TestDecodeQueryAck:
    """Test suite for query acknowledgements."""

    def test_ok_with_session(self):
        ack = decode_query_ack("<response><status>ok</status><session> s42 </session></response>")
        assert ack.status == "ok"
        assert ack.session_id == "s42"
        assert ack.message is None

    def test_error_with_message(self):
        ack = decode_query_ack(
            "<response><status>error</status><message>unknown relation: employes</message></response>"
        )
        assert ack.status == "error"
        assert ack.session_id is None
        assert ack.message == "unknown relation: employes"

    def test_missing_status_is_empty(self):
        """A document without status decodes, with an empty status."""
        ack = decode_query_ack("<response><session>s1</session></response>")
        assert ack.status == ""

    def test_leading_whitespace_and_declaration(self):
        ack = decode_query_ack('\n  <?xml version="1.0"?><response><status>ok</status><session>s1</session></response>')
        assert ack.session_id == "s1"

    def test_malformed(self):
        with pytest.raises(MalformedDocument):
            decode_query_ack("<response><status>ok</status>")

    def test_entity_declarations_rejected(self):
        """Documents with entity declarations are refused as malformed."""
        xml = (
            '<?xml version="1.0"?><!DOCTYPE r [<!ENTITY a "aaaaaaaa">]>'
            "<response><status>&a;</status></response>"
        )
        with pytest.raises(MalformedDocument):
            decode_query_ack(xml)


class TestDecodeTupleBatch:
    """Test suite for tuple batches."""

    def test_tuples_in_order(self):
        batch = decode_tuple_batch(
            "<response><status>ok</status>"
            '<tuple><attribute name="id">1</attribute><attribute name="name">Ann</attribute></tuple>'
            '<tuple><attribute name="id">2</attribute><attribute name="name">Bob</attribute></tuple>'
            "</response>"
        )
        assert batch.status == "ok"
        assert batch.tuples == [{"id": "1", "name": "Ann"}, {"id": "2", "name": "Bob"}]

    def test_values_are_not_trimmed(self):
        """Attribute text is taken exactly as sent."""
        batch = decode_tuple_batch(
            '<response><status>ok</status><tuple><attribute name="name">  Ann \n</attribute></tuple></response>'
        )
        assert batch.tuples[0]["name"] == "  Ann \n"

    def test_empty_attribute_is_empty_string(self):
        batch = decode_tuple_batch(
            '<response><status>ok</status><tuple><attribute name="name"/></tuple></response>'
        )
        assert batch.tuples == [{"name": ""}]

    def test_escaped_text(self):
        batch = decode_tuple_batch(
            '<response><status>ok</status><tuple><attribute name="q">a &lt; b &amp; c</attribute></tuple></response>'
        )
        assert batch.tuples[0]["q"] == "a < b & c"

    def test_no_tuples(self):
        batch = decode_tuple_batch("<response><status>ok</status></response>")
        assert batch.tuples == []

    def test_error(self):
        batch = decode_tuple_batch("<response><status>error</status><message>no such session</message></response>")
        assert batch.status == "error"
        assert batch.message == "no such session"
        assert batch.tuples == []


class TestDecodeSchema:
    """Test suite for schema listings."""

    XML = """
    <response>
      <status>ok</status>
      <relation name="employees" cardinality="finite">
        <attribute name="id" type="integer"/>
        <attribute name="name" type="string"/>
        <constraints>
          <constraint attribute="id">  primary key  </constraint>
          <attribute name="hidden" type="string"/>
        </constraints>
        <provenance>
          base relation
        </provenance>
      </relation>
      <relation name="naturals" cardinality="infinite">
        <attribute name="n" type="integer"/>
      </relation>
    </response>
    """

    def test_relations(self):
        schema = decode_schema(self.XML)
        assert schema.status == "ok"
        assert [_r.name for _r in schema.relations] == ["employees", "naturals"]
        assert [_r.cardinality for _r in schema.relations] == ["finite", "infinite"]

    def test_attributes_outside_constraints(self):
        """Attributes inside a constraints block do not count as relation attributes."""
        employees = decode_schema(self.XML).relations[0]
        assert employees.attributes == [AttributeType("id", "integer"), AttributeType("name", "string")]

    def test_constraints_trimmed(self):
        employees = decode_schema(self.XML).relations[0]
        assert employees.constraints == [Constraint("id", "primary key")]

    def test_provenance(self):
        employees, naturals = decode_schema(self.XML).relations
        assert employees.provenance == "base relation"
        assert naturals.provenance is None
        assert naturals.constraints == []

    def test_error(self):
        schema = decode_schema("<response><status>error</status><message>busy</message></response>")
        assert schema.relations == []
        assert schema.message == "busy"


class TestExpectOk:
    """Test suite for status checking."""

    def test_ok_passes_through(self):
        ack = decode_query_ack("<response><status>ok</status><session>s1</session></response>")
        assert expect_ok(ack) is ack

    def test_message_becomes_error(self):
        ack = decode_query_ack("<response><status>error</status><message>bad query</message></response>")
        with pytest.raises(ProtocolFailure, match="bad query"):
            expect_ok(ack)

    def test_status_without_message(self):
        ack = decode_query_ack("<response><status>busy</status></response>")
        with pytest.raises(ProtocolFailure, match="busy"):
            expect_ok(ack)

    def test_missing_status(self):
        ack = decode_query_ack("<response></response>")
        with pytest.raises(ProtocolFailure, match="no status"):
            expect_ok(ack)
