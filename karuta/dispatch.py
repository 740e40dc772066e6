#!/usr/bin/python3.11
#-*- coding: utf-8 -*-


from logging import getLogger, basicConfig, DEBUG
log = getLogger(__name__)

if __name__ == '__main__':
	basicConfig(level=DEBUG, format='%(asctime)-8s %(levelname)-8s %(name)-32s %(message)s')


__all__ = 'Pending', 'Dispatcher'


from enum import Enum
from queue import SimpleQueue
from threading import Thread, Condition, Lock, current_thread


class Pending:
	"Number of tasks queued or running, possibly shared by several dispatchers."

	def __init__(self):
		self.count = 0
		self.condition = Condition()

	def increment(self):
		with self.condition:
			self.count += 1

	def decrement(self):
		with self.condition:
			self.count -= 1
			if self.count == 0:
				self.condition.notify_all()

	def wait(self, timeout=None):
		"Block until no task is left. Returns False on timeout."
		with self.condition:
			return self.condition.wait_for(lambda: self.count == 0, timeout=timeout)


class Dispatcher:
	"""
	A thread that runs posted callables one at a time, in posting order.

	State owned by a dispatcher is only touched from tasks running on it, so it
	needs no further locking. A task may post follow-up tasks to any dispatcher
	sharing the same `Pending` counter; the counter cannot drop to zero while
	such a chain is still going.
	"""

	Sentinel = Enum('Dispatcher.Sentinel', 'STOP')

	def __init__(self, name, pending=None):
		self.name = name
		self.pending = pending if pending is not None else Pending()
		self.queue = SimpleQueue()
		self.lock = Lock()
		self.stopped = False
		self.thread = Thread(target=self.__consumer, name=name, daemon=True)
		self.thread.start()

	def __consumer(self):
		while True:
			item = self.queue.get()
			if item is self.Sentinel.STOP:
				break

			function, args, kwargs = item
			try:
				function(*args, **kwargs)
			except Exception as error:
				log.error(f"Error in task {getattr(function, '__name__', function)} on {self.name}: {repr(error)}")
				log.debug("Task traceback:", exc_info=True)
			finally:
				self.pending.decrement()

		log.debug(f"Dispatcher {self.name} stopped.")

	def post(self, function, *args, **kwargs):
		"Queue a call. Returns False if the dispatcher is already stopped."
		with self.lock:
			if self.stopped:
				log.warning(f"Dispatcher {self.name} stopped, dropping {getattr(function, '__name__', function)}.")
				return False
			self.pending.increment()
			self.queue.put((function, args, kwargs))
			return True

	def is_current(self):
		"True when called from a task running on this dispatcher."
		return current_thread() is self.thread

	def stop(self, wait=True):
		"Let the queued tasks finish, then end the thread."
		with self.lock:
			if self.stopped:
				return
			self.stopped = True
			self.queue.put(self.Sentinel.STOP)

		if wait and not self.is_current():
			self.thread.join()


if __debug__ and __name__ == '__main__':
	from time import sleep

	owner = Dispatcher('owner')
	worker = Dispatcher('worker', owner.pending)

	def slow(n):
		sleep(0.1)
		owner.post(log.info, f"slow task {n} done")

	for n in range(3):
		worker.post(slow, n)

	owner.pending.wait()
	worker.stop()
	owner.stop()
