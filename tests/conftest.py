import socket
import socketserver
from itertools import count
from threading import Thread, Lock, Event
from xml.sax.saxutils import escape, quoteattr

import pytest

from karuta.engine import Engine


EMPLOYEES = [
    {"id": str(n), "name": f"Employee {n}", "dept_id": str(n % 3 + 1)}
    for n in range(1, 24)
]

DEPARTMENTS = [
    {"id": "1", "name": "Research"},
    {"id": "2", "name": "Sales"},
    {"id": "3", "name": "Support"},
]

SCHEMA_XML = b"""<response>
  <status>ok</status>
  <relation name="employees" cardinality="finite">
    <attribute name="id" type="integer"/>
    <attribute name="name" type="string"/>
    <attribute name="dept_id" type="integer"/>
    <constraints>
      <constraint attribute="id"> primary key </constraint>
    </constraints>
    <provenance> base relation </provenance>
  </relation>
  <relation name="departments" cardinality="finite">
    <attribute name="id" type="integer"/>
    <attribute name="name" type="string"/>
  </relation>
</response>"""


def ok(body=""):
    return f"<response><status>ok</status>{body}</response>".encode("utf-8")


def error(message):
    return f"<response><status>error</status><message>{escape(message)}</message></response>".encode("utf-8")


def tuples_xml(rows):
    parts = []
    for row in rows:
        attributes = "".join(
            f"<attribute name={quoteattr(name)}>{escape(value)}</attribute>"
            for name, value in row.items()
        )
        parts.append(f'<tuple><attribute name="meta">row</attribute>{attributes}</tuple>')
    return "".join(parts)


class DominoHandler(socketserver.StreamRequestHandler):
    def handle(self):
        try:
            self.serve_commands()
        except OSError:
            pass  # client went away mid-write

    def serve_commands(self):
        for raw in self.rfile:
            command = raw.decode("utf-8").rstrip("\n")
            with self.server.lock:
                self.server.commands.append(command)
            verb = command.partition(" ")[0]

            if verb in self.server.truncate:
                self.wfile.write(b"<response><status>ok</status><tuple><attri")
                return
            if verb in self.server.stall:
                continue
            if verb in self.server.hold:
                self.server.release.wait(5)

            response = self.server.respond(command)
            # two writes, so the client sees the document arrive in pieces
            half = len(response) // 2
            self.wfile.write(response[:half])
            self.wfile.write(response[half:])

    def finish(self):
        try:
            super().finish()
        except OSError:
            pass
        self.server.hangup.set()


class FakeDomino(socketserver.ThreadingTCPServer):
    """Scripted Domino server on an ephemeral local port."""

    allow_reuse_address = True
    daemon_threads = True

    def __init__(self):
        super().__init__(("127.0.0.1", 0), DominoHandler)
        self.tables = {"employees": EMPLOYEES, "departments": DEPARTMENTS}
        self.commands = []
        self.sessions = {}
        self.session_ids = count(1)
        self.truncate = set()
        self.stall = set()
        self.hold = set()
        self.release = Event()
        self.hangup = Event()
        self.lock = Lock()

    @property
    def port(self):
        return self.server_address[1]

    def respond(self, command):
        verb, _, rest = command.partition(" ")

        if verb == "SCHEMA":
            return SCHEMA_XML

        if verb == "QUERY":
            name = rest.strip().strip("{}").split(",")[-1].strip()
            if name not in self.tables:
                return error(f"unknown relation: {name}")
            session_id = f"s{next(self.session_ids)}"
            with self.lock:
                self.sessions[session_id] = [self.tables[name], 0]
            return ok(f"<session>{session_id}</session>")

        if verb == "NEXT":
            session_id, size = rest.split()
            with self.lock:
                if session_id not in self.sessions:
                    return error(f"no such session: {session_id}")
                rows, offset = self.sessions[session_id]
                batch = rows[offset:offset + int(size)]
                self.sessions[session_id][1] = offset + len(batch)
            return ok(tuples_xml(batch))

        if verb == "CLOSE":
            with self.lock:
                self.sessions.pop(rest.strip(), None)
            return ok()

        return error(f"unknown command: {verb}")


@pytest.fixture
def domino():
    server = FakeDomino()
    thread = Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.release.set()
    server.shutdown()
    server.server_close()


@pytest.fixture
def engine():
    engine = Engine(connect_timeout=5, read_timeout=5)
    yield engine
    engine.close()


@pytest.fixture
def connected(domino, engine):
    engine.connect("127.0.0.1", domino.port)
    assert engine.wait_idle(5)
    assert engine.connected
    return engine


@pytest.fixture
def free_port():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port
