#!/usr/bin/python3.11
#-*- coding: utf-8 -*-

"""
Socket level of the Domino text protocol.

The client sends one newline-terminated command and the server answers with one
XML document rooted at `<response>`. Responses carry no length prefix, so a
response ends where the closing `</response>` tag is seen. The server never
emits that tag before the real end of a document.

	SCHEMA
	QUERY {scan, employees}
	NEXT <session> <count>
	CLOSE <session>
"""


from logging import getLogger, basicConfig, DEBUG
log = getLogger(__name__)

if __name__ == '__main__':
	basicConfig(level=DEBUG, format='%(asctime)-8s %(levelname)-8s %(name)-32s %(message)s')


__all__ = 'KarutaError', 'NotConnected', 'TransportFailure', 'IncompleteFrame', 'MalformedDocument', 'ProtocolFailure', 'EmptyInput', 'Buffer', 'FrameReader', 'Channel'


import socket
from collections import deque
from threading import Lock


def locked(old_method):
	def new_method(self, *args, **kwargs):
		with self.lock:
			return old_method(self, *args, **kwargs)
	new_method.__name__ = old_method.__name__
	return new_method


class KarutaError(Exception):
	"Error thrown by the query engine."


class NotConnected(KarutaError):
	"Command attempted without a ready connection."


class TransportFailure(KarutaError):
	"Send or receive failed on the underlying stream."


class IncompleteFrame(KarutaError):
	"The stream ended before a complete response document arrived."


class MalformedDocument(KarutaError):
	"Response document is not well-formed XML."


class ProtocolFailure(KarutaError):
	"Server answered with a status other than `ok`."


class EmptyInput(KarutaError):
	"Nothing to submit."


class Buffer:
	"Byte accumulator made of received chunks."

	def __init__(self):
		self.data = deque()
		self.length = 0

	def __len__(self):
		return self.length

	def __bytes__(self):
		return bytes().join(self.data)

	def put(self, b):
		if b:
			self.data.append(b)
			self.length += len(b)

	def find(self, pattern):
		"Offset of `pattern` or -1. Patterns may straddle chunk boundaries, so the chunks get merged first."
		if len(self.data) > 1:
			merged = bytes(self)
			self.data.clear()
			self.data.append(merged)
		if not self.data:
			return -1
		return self.data[0].find(pattern)

	def get(self, n):
		if len(self) < n:
			raise ValueError("Not enough data")

		result = []
		result_length = 0
		while result_length < n:
			s = self.data[0]
			needed = n - result_length
			if len(s) <= needed:
				result.append(s)
				del self.data[0]
				result_length += len(s)
			else:
				result.append(s[:needed])
				self.data[0] = s[needed:]
				result_length += needed

		self.length -= result_length
		return bytes().join(result)

	def clear(self):
		self.data.clear()
		self.length = 0


class FrameReader:
	"""
	Cuts one response document at a time out of a byte stream.

	`recv` is a callable like `socket.recv`: it takes a maximum size and returns
	bytes, where an empty result means the peer will send nothing more. Bytes
	following the closing tag are kept for the next frame.
	"""

	sentinel = b'</response>'
	chunk_size = 65536

	def __init__(self, recv, sentinel=None, chunk_size=None):
		self.recv = recv
		if sentinel is not None:
			self.sentinel = sentinel
		if chunk_size is not None:
			self.chunk_size = chunk_size
		self.buffer = Buffer()

	def read_frame(self):
		"Return the next complete document as text."

		while True:
			pos = self.buffer.find(self.sentinel)
			if pos >= 0:
				frame = self.buffer.get(pos + len(self.sentinel))
				log.debug(f"frame complete: {len(frame)} bytes")
				try:
					return frame.decode('utf-8')
				except UnicodeDecodeError as error:
					log.error(f"Response is not valid UTF-8: {error}")
					raise MalformedDocument(f"Response is not valid UTF-8: {error}")

			try:
				data = self.recv(self.chunk_size)
			except socket.timeout:
				raise TransportFailure("Receive failed: timed out")
			except OSError as error:
				raise TransportFailure(f"Receive failed: {error}")

			if not data:
				log.warning(f"Stream closed with {len(self.buffer)} bytes of unterminated response.")
				self.buffer.clear()
				raise IncompleteFrame("Connection closed before a complete response was received")

			log.debug(f"recv: {data}")
			self.buffer.put(data)

	def pending(self):
		"Number of bytes received but not yet returned as a frame."
		return len(self.buffer)


class Channel:
	"""
	One TCP connection to the server.

	`command` sends a command and waits for its response document. The method
	holds a lock for the whole round trip, because the protocol pairs responses
	with requests purely by order.
	"""

	terminator = '\n'

	def __init__(self, address, connect_timeout=None, read_timeout=None):
		self.address = address
		self.connect_timeout = connect_timeout
		self.read_timeout = read_timeout
		self.lock = Lock()
		self.send_lock = Lock()

	def open(self):
		"Open network connection to the server. Socket errors propagate to the caller."
		self.__sock = socket.create_connection(self.address, timeout=self.connect_timeout)
		self.__sock.settimeout(self.read_timeout)
		self.reader = FrameReader(self.__sock.recv)
		log.info(f"Connected to {self.address[0]}:{self.address[1]}")

	def is_open(self):
		return hasattr(self, '_Channel__sock')

	def close(self):
		"Close network connection to the server."
		if not self.is_open():
			return
		try:
			self.__sock.shutdown(socket.SHUT_RDWR)
		except OSError:
			pass # peer already gone
		self.__sock.close()
		del self.__sock
		log.info(f"Disconnected from {self.address[0]}:{self.address[1]}")

	def shutdown(self):
		"""
		Stop traffic in both directions without taking the command lock, so a
		pending `command` returns at once with `IncompleteFrame`. The socket is
		still owned by the thread running commands; call `close` from there.
		"""
		sock = getattr(self, '_Channel__sock', None)
		if sock is None:
			return
		try:
			sock.shutdown(socket.SHUT_RDWR)
		except OSError:
			pass # closed meanwhile
		log.debug(f"Shut down connection to {self.address[0]}:{self.address[1]}")

	def send(self, command):
		"Write one command line. Safe to call while another thread waits in `command`."

		sock = getattr(self, '_Channel__sock', None)
		if sock is None:
			raise NotConnected("Not connected to server")

		data = (command.rstrip('\r\n') + self.terminator).encode('utf-8')
		log.debug(f"send: {data}")
		with self.send_lock:
			try:
				sock.sendall(data)
			except OSError as error:
				raise TransportFailure(f"Send failed: {error}")

	@locked
	def command(self, command):
		"Send one command, return its response document."

		if not self.is_open():
			raise NotConnected("Not connected to server")

		log.info(f"command: {command.strip()}")
		self.send(command)
		return self.reader.read_frame()

	def __enter__(self):
		self.open()
		return self

	def __exit__(self, *args):
		self.close()


if __debug__ and __name__ == '__main__':
	with Channel(('127.0.0.1', 8080), connect_timeout=5) as channel:
		print(channel.command('SCHEMA'))
		print(channel.command('QUERY {scan, employees}'))
