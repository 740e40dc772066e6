#!/usr/bin/python3.11
#-*- coding: utf-8 -*-


from logging import getLogger, basicConfig, DEBUG
log = getLogger(__name__)

if __name__ == '__main__':
	basicConfig(level=DEBUG, format='%(asctime)-8s %(levelname)-8s %(name)-32s %(message)s')


__all__ = 'Engine',


if __name__ == '__main__':
	from karuta.protocol import KarutaError, NotConnected, EmptyInput
	from karuta.dispatch import Dispatcher
	from karuta.connection import Phase, ConnectionManager
	from karuta.sessions import SessionRegistry
	from karuta.wire import decode_schema, expect_ok
	from karuta.expressions import split_queries, format_text
else:
	from .protocol import KarutaError, NotConnected, EmptyInput
	from .dispatch import Dispatcher
	from .connection import Phase, ConnectionManager
	from .sessions import SessionRegistry
	from .wire import decode_schema, expect_ok
	from .expressions import split_queries, format_text


class Engine:
	"""
	Query engine for a Domino server. Owns one connection and the results of
	the queries submitted over it.

	Commands (`connect`, `submit`, `load_more`, ...) return at once; the work
	runs on the engine's own thread. Read the outcome from the observable
	attributes, either after `wait_idle` or from a subscriber callback:

	```
		with Engine() as engine:
			engine.connect('127.0.0.1', 8080)
			engine.wait_idle()
			print([_relation.name for _relation in engine.schema])

			engine.submit("{scan, employees}\\n{scan, departments}")
			engine.wait_idle()
			for result in engine.results:
				print(result.query, result.error_message or result.table.to_tsv())
	```

	Observable attributes:
		state - ConnectionState of the connection
		connected - True when commands can be sent
		is_loading - True while any result waits for the server
		error_message - last engine-level error, None if there is none
		results - QueryResult records in submission order
		schema - RelationSchema list from the last schema fetch
	"""

	batch_size = 10
	connect_timeout = 10.0
	read_timeout = None

	def __init__(self, batch_size=None, connect_timeout=None, read_timeout=None):
		if batch_size is not None:
			self.batch_size = batch_size
		if connect_timeout is not None:
			self.connect_timeout = connect_timeout
		if read_timeout is not None:
			self.read_timeout = read_timeout

		self.error_message = None
		self.schema = []
		self.subscribers = []

		self.owner = Dispatcher('karuta-owner')
		self.connection = ConnectionManager(self.owner, observer=self.__on_state, connect_timeout=self.connect_timeout, read_timeout=self.read_timeout)
		self.registry = SessionRegistry(self.connection, on_change=self.__changed, batch_size=self.batch_size)

	@property
	def state(self):
		return self.connection.state

	@property
	def connected(self):
		return self.connection.connected

	@property
	def is_loading(self):
		return self.registry.is_loading

	@property
	def results(self):
		return self.registry.results

	def result(self, result_id):
		return self.registry.get(result_id)

	def subscribe(self, callback):
		"Call `callback(engine)` on the engine thread after every change."
		self.subscribers.append(callback)
		return callback

	def unsubscribe(self, callback):
		self.subscribers.remove(callback)

	def __changed(self):
		for callback in list(self.subscribers):
			callback(self)

	def __on_state(self, state):
		if state.phase == Phase.READY:
			self.error_message = None
			self.__fetch_schema()
		elif state.error_message:
			self.error_message = state.error_message
		self.__changed()

	def connect(self, host, port):
		self.owner.post(self.connection.connect, host, port)

	def disconnect(self):
		self.owner.post(self.__disconnect)

	def __disconnect(self):
		self.registry.clear(detach=True)
		self.connection.disconnect()

	def submit(self, text):
		"Split the buffer into queries and run them, replacing the current results."
		self.owner.post(self.__submit, text)

	def __submit(self, text):
		queries = split_queries(text)
		self.error_message = None
		try:
			self.registry.submit(queries)
		except (NotConnected, EmptyInput) as error:
			log.warning(f"Submit refused: {error}")
			self.error_message = str(error)
			self.__changed()

	def load_more(self, result_id):
		self.owner.post(self.registry.load_more, result_id)

	def close_result(self, result_id):
		self.owner.post(self.registry.close, result_id)

	def clear(self):
		self.owner.post(self.__clear)

	def __clear(self):
		self.error_message = None
		self.registry.clear()

	def fetch_schema(self):
		self.owner.post(self.__fetch_schema)

	def __fetch_schema(self):
		log.info("Fetching schema.")
		self.connection.send_command('SCHEMA', self.__on_schema)

	def __on_schema(self, frame, error):
		if error is not None and self.state.phase == Phase.CANCELLED:
			log.debug(f"Schema fetch abandoned: {error}")
			return

		try:
			if error is not None:
				raise error
			response = expect_ok(decode_schema(frame))
		except KarutaError as failure:
			log.warning(f"Schema fetch failed: {failure}")
			self.error_message = f"Schema error: {failure}"
		else:
			log.info(f"Schema loaded: {len(response.relations)} relations")
			self.schema = response.relations
		self.__changed()

	@staticmethod
	def format(text):
		"Canonical spacing for every line of a query buffer."
		return format_text(text)

	def wait_idle(self, timeout=None):
		"Block until no command is queued or waiting for a response. Returns False on timeout."
		return self.owner.pending.wait(timeout)

	def close(self):
		"Disconnect and stop the engine thread."
		self.owner.post(self.__disconnect)
		self.owner.stop()

	def __enter__(self):
		return self

	def __exit__(self, *args):
		self.close()


if __debug__ and __name__ == '__main__':
	with Engine(read_timeout=30) as engine:
		engine.subscribe(lambda _engine: log.debug(f"state={_engine.state} loading={_engine.is_loading} results={len(_engine.results)}"))
		engine.connect('127.0.0.1', 8080)
		engine.wait_idle()
		for relation in engine.schema:
			print(relation.name, relation.cardinality, [_attr.name for _attr in relation.attributes])

		engine.submit('{scan, employees}{scan, departments}')
		engine.wait_idle()
		for result in engine.results:
			print(result.query, result.error_message)
			if result.table:
				print(result.table.to_tsv())
