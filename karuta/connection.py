#!/usr/bin/python3.11
#-*- coding: utf-8 -*-

"""
Connection lifecycle.

The manager lives on the owner dispatcher: all of its methods must be called
from there, and everything it reports (state transitions, command responses)
is delivered there. Blocking socket work runs on a transport dispatcher, one
per connection, whose queue holds the commands waiting for their turn. Only
the head of that queue is ever on the wire.

	idle -> preparing -> ready -> cancelled
	idle -> preparing -> waiting(reason) | failed(reason)
	ready -> failed(reason), when the stream breaks
"""


from logging import getLogger
log = getLogger(__name__)


__all__ = 'Phase', 'ConnectionState', 'ConnectionManager'


import socket
from collections import namedtuple
from enum import Enum
from errno import ENETUNREACH, EHOSTUNREACH, ENETDOWN

from .protocol import Channel, KarutaError, NotConnected, TransportFailure, IncompleteFrame
from .dispatch import Dispatcher


Phase = Enum('Phase', 'IDLE PREPARING READY WAITING FAILED CANCELLED')


class ConnectionState(namedtuple('ConnectionState', 'phase reason')):
	__slots__ = ()

	def __str__(self):
		if self.reason:
			return f'{self.phase.name.lower()}({self.reason})'
		return self.phase.name.lower()

	@property
	def connected(self):
		return self.phase == Phase.READY

	@property
	def error_message(self):
		"Text to show the user for this state, None when there is nothing to report."
		if self.phase == Phase.WAITING:
			return f"Waiting to connect: {self.reason}"
		elif self.phase == Phase.FAILED:
			return f"Connection failed: {self.reason}"
		else:
			return None


class ConnectionManager:
	connect_timeout = 10.0
	read_timeout = None

	unreachable = ENETUNREACH, EHOSTUNREACH, ENETDOWN

	def __init__(self, owner, observer=None, connect_timeout=None, read_timeout=None):
		self.owner = owner
		self.observer = observer
		if connect_timeout is not None:
			self.connect_timeout = connect_timeout
		if read_timeout is not None:
			self.read_timeout = read_timeout
		self.state = ConnectionState(Phase.IDLE, None)
		self.channel = None
		self.transport = None

	@property
	def connected(self):
		return self.state.connected

	def connect(self, host, port):
		"Start connecting. The outcome is reported to the observer."

		if self.channel is not None:
			log.warning(f"Connect to {host}:{port} ignored, connection already {self.state}.")
			return

		channel = Channel((host, port), connect_timeout=self.connect_timeout, read_timeout=self.read_timeout)
		self.channel = channel
		self.transport = Dispatcher(f'karuta-transport-{host}:{port}', self.owner.pending)
		self.__transition(channel, Phase.PREPARING, None)
		self.transport.post(self.__open, channel)

	def __open(self, channel):
		try:
			channel.open()
		except socket.timeout:
			phase, reason = Phase.WAITING, "timed out"
		except OSError as error:
			reason = error.strerror or str(error)
			phase = Phase.WAITING if error.errno in self.unreachable else Phase.FAILED
		else:
			phase, reason = Phase.READY, None

		self.owner.post(self.__transition, channel, phase, reason)

	def __transition(self, channel, phase, reason):
		if channel is not self.channel:
			log.debug(f"Stale transition to {phase.name} ignored.")
			return

		self.state = ConnectionState(phase, reason)
		if phase in (Phase.WAITING, Phase.FAILED):
			log.error(f"Connection {self.state}")
			self.__teardown()
		else:
			log.info(f"Connection {self.state}")

		if self.observer is not None:
			self.observer(self.state)

	def send_command(self, command, completion):
		"""
		Queue a command. `completion(frame, error)` runs on the owner dispatcher
		with either the response text or the exception. Without a ready
		connection it runs at once with `NotConnected`.
		"""

		if not self.connected:
			log.warning(f"Command `{command.strip()}` refused: not connected.")
			completion(None, NotConnected("Not connected to server"))
			return False

		return self.transport.post(self.__round_trip, self.channel, command, completion)

	def __round_trip(self, channel, command, completion):
		try:
			frame = channel.command(command)
		except (TransportFailure, IncompleteFrame) as error:
			if channel is self.channel:
				log.error(f"Command `{command.strip()}` failed: {error}")
			else:
				log.debug(f"Command `{command.strip()}` abandoned: {error}")
			channel.close() # stream position is lost
			self.owner.post(completion, None, error)
			self.owner.post(self.__transition, channel, Phase.FAILED, str(error))
		except KarutaError as error:
			log.warning(f"Command `{command.strip()}` failed: {error}")
			self.owner.post(completion, None, error)
		else:
			log.debug(f"response to `{command.strip()}`: {frame}")
			self.owner.post(completion, frame, None)

	def notify(self, command):
		"""
		Write a command without queueing it and without reading a response.
		Only for commands sent right before `disconnect`, whose responses
		nobody will read.
		"""

		if not self.connected:
			return False
		try:
			self.channel.send(command)
		except KarutaError as error:
			log.warning(f"Command `{command.strip()}` not sent: {error}")
			return False
		return True

	def __teardown(self):
		channel, transport = self.channel, self.transport
		self.channel = None
		self.transport = None
		channel.shutdown() # wakes a round trip stuck waiting for its response
		transport.post(channel.close)
		transport.stop(wait=False)

	def disconnect(self):
		"Close the connection at once. Commands still queued or in flight complete with an error that nobody sees."

		if self.channel is None:
			return

		self.__teardown()
		self.state = ConnectionState(Phase.CANCELLED, None)
		log.info(f"Connection {self.state}")
		if self.observer is not None:
			self.observer(self.state)
