#!/usr/bin/python3.11
#-*- coding: utf-8 -*-

"Console front end: `python -m karuta -h 127.0.0.1 -p 8080`."


from logging import getLogger, basicConfig, DEBUG, WARNING
log = getLogger('karuta')


import argparse

from karuta.engine import Engine
from karuta.expressions import EXAMPLES, scan_query


commands_help = '''Commands:
  :more N      load the next batch of rows of result N
  :close N     close result N
  :schema      show the relations of the database
  :format TEXT show TEXT with canonical spacing
  :examples    show example queries
  :clear       drop all results
  :quit        disconnect and exit
Anything else is run as one or more queries.'''


def parse_arguments(argv=None):
	parser = argparse.ArgumentParser(prog='karuta', description='Domino query console', add_help=False)
	parser.add_argument('-h', '--host', default='127.0.0.1', help='Server hostname (default: 127.0.0.1)')
	parser.add_argument('-p', '--port', type=int, default=8080, help='Server port (default: 8080)')
	parser.add_argument('-t', '--timeout', type=float, default=None, help='Seconds to wait for a response (default: no limit)')
	parser.add_argument('-v', '--verbose', action='store_true', help='Log protocol traffic')
	parser.add_argument('-H', '--help', action='help', help='Show this help message and exit')
	return parser.parse_args(argv)


def show_schema(engine):
	if not engine.schema:
		print("No schema loaded.")
	for relation in engine.schema:
		print(f"{relation.name} ({relation.cardinality})")
		for attribute in relation.attributes:
			print(f"  {attribute.name}: {attribute.type}")
		for constraint in relation.constraints:
			print(f"  constraint {constraint.attribute}: {constraint.constraint}")
		if relation.provenance:
			print(f"  provenance: {relation.provenance}")
		print(f"  try: {scan_query(relation.name)}")


def show_results(engine):
	if engine.error_message:
		print(f"Error: {engine.error_message}")

	for n, result in enumerate(engine.results, 1):
		print(f"[{n}] {result.query}")
		if result.error_message:
			print(f"    error: {result.error_message}")
		if result.table is not None:
			print(result.table.to_tsv(), end='')
			timing = f" in {result.execution_time:.2f}s" if result.execution_time is not None else ""
			print(f"    {result.table.row_count} rows{timing}{' (more: :more ' + str(n) + ')' if result.has_more_rows else ''}")
		elif not result.error_message:
			print("    no rows")
		print()


def pick_result(engine, argument):
	try:
		return engine.results[int(argument) - 1].id
	except (ValueError, IndexError):
		print(f"No result number {argument!r}.")
		return None


def interactive_session(engine):
	while True:
		try:
			line = input("domino> ").strip()
		except EOFError:
			break

		if not line:
			continue

		if not line.startswith(':'):
			engine.submit(line)
			engine.wait_idle()
			show_results(engine)
			continue

		command, _, argument = line[1:].partition(' ')
		if command in ('quit', 'exit'):
			break
		elif command == 'more':
			result_id = pick_result(engine, argument)
			if result_id:
				engine.load_more(result_id)
				engine.wait_idle()
				show_results(engine)
		elif command == 'close':
			result_id = pick_result(engine, argument)
			if result_id:
				engine.close_result(result_id)
				engine.wait_idle()
		elif command == 'schema':
			show_schema(engine)
		elif command == 'format':
			print(engine.format(argument))
		elif command == 'examples':
			for name, query in EXAMPLES.items():
				print(f"{name:20} {query}")
		elif command == 'clear':
			engine.clear()
			engine.wait_idle()
		else:
			print(commands_help)


def main(argv=None):
	args = parse_arguments(argv)
	basicConfig(level=DEBUG if args.verbose else WARNING, format='%(asctime)-8s %(levelname)-8s %(name)-32s %(message)s')

	with Engine(read_timeout=args.timeout) as engine:
		log.info(f"Connecting to {args.host}:{args.port}")
		engine.connect(args.host, args.port)
		engine.wait_idle()

		if not engine.connected:
			print(f"Error: could not connect to {args.host}:{args.port}: {engine.error_message}")
			return 1

		print(f"Connected to {args.host}:{args.port}. Type :help for commands.")
		show_schema(engine)
		interactive_session(engine)
		print("Disconnecting...")

	return 0


if __name__ == '__main__':
	raise SystemExit(main())
