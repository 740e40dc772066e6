#!/usr/bin/python3.11
#-*- coding: utf-8 -*-


from logging import getLogger
log = getLogger(__name__)


__all__ = 'SessionRegistry',


from functools import partial
from time import monotonic

from .protocol import KarutaError, NotConnected, EmptyInput, ProtocolFailure
from .relation import QueryResult, apply_batch
from .wire import decode_query_ack, decode_tuple_batch, expect_ok


class SessionRegistry:
	"""
	Results of the submitted queries, keyed by result id.

	Every submitted query gets a server-side session (a cursor) when the server
	acknowledges it. Rows are then pulled from the session in batches:

		QUERY {scan, employees}   ->  <session>s1</session>
		NEXT s1 10                ->  up to 10 tuples
		NEXT s1 10                ->  ...
		CLOSE s1

	The registry runs on the owner dispatcher, like the connection manager it
	sends through. A response that arrives for a record no longer present
	(after `clear` or `close`) is dropped.
	"""

	batch_size = 10

	def __init__(self, connection, on_change=None, batch_size=None, clock=monotonic):
		self.connection = connection
		self.on_change = on_change
		if batch_size is not None:
			self.batch_size = batch_size
		self.clock = clock
		self.__results = {}

	@property
	def results(self):
		"Records in submission order."
		return list(self.__results.values())

	def get(self, result_id):
		return self.__results.get(result_id)

	def __contains__(self, result_id):
		return result_id in self.__results

	def __len__(self):
		return len(self.__results)

	@property
	def is_loading(self):
		return any(_result.is_loading for _result in self.__results.values())

	def __changed(self):
		if self.on_change is not None:
			self.on_change()

	def __replace(self, result_id, **changes):
		result = self.__results.get(result_id)
		if result is None:
			return None
		result = result._replace(**changes)
		self.__results[result_id] = result
		return result

	@staticmethod
	def __receive(frame, error, decoder):
		"Decoded response of a completion. Raises the transport error, a parse error or a non-ok status."
		if error is not None:
			raise error
		return expect_ok(decoder(frame))

	def submit(self, queries):
		"Replace the result set with one record per query and send them all. Returns the new result ids."

		if not self.connection.connected:
			raise NotConnected("Not connected to server")
		if not queries:
			raise EmptyInput("No queries to execute")

		self.__close_sessions()

		results = {}
		for query in queries:
			result = QueryResult.new(query)
			results[result.id] = result
		self.__results = results
		log.info(f"Submitting {len(results)} queries.")

		for result_id in list(results):
			result = self.__replace(result_id, is_loading=True, start_time=self.clock())
			self.connection.send_command(f'QUERY {result.query}', partial(self.__on_ack, result_id))

		self.__changed()
		return list(results)

	def __on_ack(self, result_id, frame, error):
		if result_id not in self.__results:
			log.debug(f"Acknowledgement for dropped result {result_id} ignored.")
			return

		try:
			ack = self.__receive(frame, error, decode_query_ack)
			if ack.session_id is None:
				raise ProtocolFailure("Acknowledgement carried no session")
		except KarutaError as failure:
			log.warning(f"Query `{self.__results[result_id].query}` failed: {failure}")
			self.__replace(result_id, is_loading=False, error_message=str(failure))
			self.__changed()
			return

		log.info(f"Query `{self.__results[result_id].query}` opened session {ack.session_id}")
		self.__replace(result_id, session_id=ack.session_id, is_loading=False)
		if not self.load_more(result_id):
			self.__changed()

	def load_more(self, result_id):
		"Request the next batch of rows. Returns False when the record has no session or a request is already running."

		result = self.__results.get(result_id)
		if result is None or result.session_id is None or result.is_loading:
			log.debug(f"Load more for {result_id} skipped.")
			return False

		self.__replace(result_id, is_loading=True)
		self.connection.send_command(f'NEXT {result.session_id} {self.batch_size}', partial(self.__on_batch, result_id))
		self.__changed()
		return True

	def __on_batch(self, result_id, frame, error):
		if result_id not in self.__results:
			log.debug(f"Batch for dropped result {result_id} ignored.")
			return

		try:
			batch = self.__receive(frame, error, decode_tuple_batch)
		except KarutaError as failure:
			log.warning(f"Fetching rows for `{self.__results[result_id].query}` failed: {failure}")
			self.__replace(result_id, is_loading=False, error_message=str(failure))
		else:
			log.debug(f"Received {len(batch.tuples)} tuples for {result_id}")
			self.__results[result_id] = apply_batch(self.__results[result_id], batch.tuples, self.batch_size, self.clock())

		self.__changed()

	def __discard(self, frame, error):
		if error is not None:
			log.debug(f"Close failed: {error}")

	def __close_session(self, result, detach=False):
		if result.session_id is None or not self.connection.connected:
			return
		if detach:
			self.connection.notify(f'CLOSE {result.session_id}')
		else:
			self.connection.send_command(f'CLOSE {result.session_id}', self.__discard)

	def __close_sessions(self, detach=False):
		for result in self.__results.values():
			self.__close_session(result, detach)

	def close(self, result_id):
		"Close the session of one result and drop the record."

		result = self.__results.get(result_id)
		if result is None:
			return False

		self.__close_session(result)
		self.__results = {_id: _result for (_id, _result) in self.__results.items() if _id != result_id}
		self.__changed()
		return True

	def clear(self, detach=False):
		"""
		Close every open session and drop all records. With `detach` the closes
		are written without waiting for replies, for a connection about to go.
		"""
		self.__close_sessions(detach)
		self.__results = {}
		self.__changed()
