#!/usr/bin/env python
"""
SongMap command line.

Create graphs, record listens, get recommendations and inspect the stored
graph without an HTTP layer. Backends and weights come from
configs/config.yaml and the environment (see songmap.config).

Usage:
    python scripts/songmap_cli.py create-graph --user 10 --type template
    python scripts/songmap_cli.py listen --user 10 --graph 1 --name "Song A" --artist "Band"
    python scripts/songmap_cli.py new-listen --user 10 --graph 1 --name "Song B"
    python scripts/songmap_cli.py recommend --user 10 --graph 1 --song 2
    python scripts/songmap_cli.py query-node --namespace G_u10_ab12 --name "Song A" --detail
    python scripts/songmap_cli.py add-property --target node --key mood --type string --value happy
    python scripts/songmap_cli.py seed-template --file data/template.yaml
"""

from __future__ import annotations
import argparse
import json
import sys
from pathlib import Path

import yaml
from dotenv import load_dotenv
from loguru import logger

from songmap.config import load_settings
from songmap.errors import SongMapError
from songmap.graph.listening_graph import ListeningGraph
from songmap.models import GRAPH_KIND_EMPTY, GRAPH_KIND_TEMPLATE, Increments
from songmap.service import SongMapService


def _print(payload):
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def cmd_create_graph(service: SongMapService, args):
    graph = service.create_graph(args.user, args.type, args.name)
    logger.success(f"Graph {graph.id} created with tag {graph.tag}")
    _print(graph.to_dict())


def cmd_list_graphs(service: SongMapService, args):
    _print([g.to_dict() for g in service.list_graphs(args.user)])


def cmd_delete_graph(service: SongMapService, args):
    graph = service.delete_graph(args.user, args.graph)
    logger.success(f"Graph {graph.id} deleted; songs under {graph.tag} were kept")


def _listen(service: SongMapService, args, new_chain: bool):
    listen = service.new_listen_song if new_chain else service.listen_song
    song = listen(
        args.user, args.graph, args.name, args.artist,
        is_random=args.random, is_full_play=not args.partial, is_skip=args.skip,
    )
    _print(song.to_dict())


def cmd_listen(service: SongMapService, args):
    _listen(service, args, new_chain=False)


def cmd_new_listen(service: SongMapService, args):
    _listen(service, args, new_chain=True)


def cmd_recommend(service: SongMapService, args):
    ranked = service.recommend_next(args.user, args.graph, args.song, args.previous, limit=args.limit)
    if not ranked:
        logger.info(f"No neighbors for song {args.song}")
    for i, item in enumerate(ranked, 1):
        print(f"{i:2d}. [{item.song.id}] {item.song.name} - {item.song.artist} "
              f"({item.direction}) score={item.score:.3f}  {item.reason}")


def cmd_history(service: SongMapService, args):
    _print([entry.to_dict() for entry in service.history(args.user, args.graph)])


def cmd_query_node(service: SongMapService, args):
    result = service.query_node(args.id, args.name, args.artist, args.namespace, args.detail)
    _print(result.to_dict())


def cmd_query_edge(service: SongMapService, args):
    result = service.query_edge(args.id, args.from_name, args.to_name, args.namespace, args.detail)
    _print(result.to_dict())


def cmd_delete_connection(service: SongMapService, args):
    deleted = service.delete_connection(args.user, args.graph, args.from_name, args.to_name)
    logger.success(f"Deleted {deleted} edge(s)")


def cmd_delete_node(service: SongMapService, args):
    deleted = service.delete_node(args.user, args.graph, args.name)
    logger.success(f"Deleted {deleted} song(s)")


def cmd_add_property(service: SongMapService, args):
    if args.target == "node":
        count = service.add_node_property(args.key, args.type, args.value)
    else:
        count = service.add_edge_property(args.key, args.type, args.value)
    logger.success(f"Set {args.key} on {count} {args.target}(s)")


def cmd_remove_property(service: SongMapService, args):
    if args.target == "node":
        count = service.remove_node_property(args.key)
    else:
        count = service.remove_edge_property(args.key)
    logger.success(f"Removed {args.key} from {count} {args.target}(s)")


def cmd_export(service: SongMapService, args):
    data = service.graph_data(args.user, args.graph)
    logger.info(f"Graph stats: {data['stats']}")
    if args.output:
        namespace = service.namespaces.resolve_namespace(args.user, args.graph)
        view = ListeningGraph(service.repository)
        view.build(namespace)
        view.export_to_json(args.output)
    else:
        _print(data)


def cmd_seed_template(service: SongMapService, args):
    """
    Load listening chains into the template namespace.

    The YAML file holds ``chains``: lists of ``{name, artist}`` played in order.
    Songs get no counters; each consecutive pair gets a NEXT edge.
    """
    with open(args.file) as f:
        template = yaml.safe_load(f) or {}
    namespace = service.namespaces.template_namespace

    songs = edges = 0
    for chain in template.get("chains", []):
        previous = None
        for item in chain:
            song = service.repository.upsert_song(namespace, item["name"], item.get("artist"), Increments())
            songs += 1
            if previous is not None and previous.id != song.id:
                service.repository.upsert_edge(namespace, previous.id, song.id)
                edges += 1
            previous = song
    logger.success(f"Seeded {namespace}: {songs} song writes, {edges} edge writes")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="SongMap listening graph tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", help="Path to config YAML (default: configs/config.yaml)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--timeout", type=float, help="Store timeout in seconds for this command (default: from config)")
    sub = parser.add_subparsers(dest="command", required=True)

    def with_graph(p):
        p.add_argument("--user", required=True, help="Owner user id")
        p.add_argument("--graph", required=True, type=int, help="Graph id")
        return p

    p = sub.add_parser("create-graph", help="Create a listening graph")
    p.add_argument("--user", required=True)
    p.add_argument("--type", choices=[GRAPH_KIND_EMPTY, GRAPH_KIND_TEMPLATE], default=GRAPH_KIND_EMPTY)
    p.add_argument("--name")
    p.set_defaults(func=cmd_create_graph)

    p = sub.add_parser("list-graphs", help="List a user's graphs")
    p.add_argument("--user", required=True)
    p.set_defaults(func=cmd_list_graphs)

    p = with_graph(sub.add_parser("delete-graph", help="Delete graph metadata"))
    p.set_defaults(func=cmd_delete_graph)

    for name, func, help_text in (
        ("listen", cmd_listen, "Record a listen, extending the chain"),
        ("new-listen", cmd_new_listen, "Record a listen starting a new chain"),
    ):
        p = with_graph(sub.add_parser(name, help=help_text))
        p.add_argument("--name", required=True)
        p.add_argument("--artist")
        p.add_argument("--random", action="store_true", help="Picked by shuffle")
        p.add_argument("--partial", action="store_true", help="Not played to the end")
        p.add_argument("--skip", action="store_true", help="Skipped")
        p.set_defaults(func=func)

    p = with_graph(sub.add_parser("recommend", help="Recommend next songs"))
    p.add_argument("--song", required=True, type=int, help="Current song id")
    p.add_argument("--previous", type=int, help="Previous song id (default: from history)")
    p.add_argument("--limit", type=int)
    p.set_defaults(func=cmd_recommend)

    p = with_graph(sub.add_parser("history", help="Show recent plays"))
    p.set_defaults(func=cmd_history)

    p = sub.add_parser("query-node", help="Inspect a song")
    p.add_argument("--id", type=int)
    p.add_argument("--name")
    p.add_argument("--artist")
    p.add_argument("--namespace")
    p.add_argument("--detail", action="store_true")
    p.set_defaults(func=cmd_query_node)

    p = sub.add_parser("query-edge", help="Inspect a NEXT edge")
    p.add_argument("--id", type=int)
    p.add_argument("--from-name")
    p.add_argument("--to-name")
    p.add_argument("--namespace")
    p.add_argument("--detail", action="store_true")
    p.set_defaults(func=cmd_query_edge)

    p = with_graph(sub.add_parser("delete-connection", help="Delete edges between two songs"))
    p.add_argument("--from-name", required=True)
    p.add_argument("--to-name", required=True)
    p.set_defaults(func=cmd_delete_connection)

    p = with_graph(sub.add_parser("delete-node", help="Delete songs by name"))
    p.add_argument("--name", required=True)
    p.set_defaults(func=cmd_delete_node)

    p = sub.add_parser("add-property", help="Set a property on all nodes or edges")
    p.add_argument("--target", choices=["node", "edge"], required=True)
    p.add_argument("--key", required=True)
    p.add_argument("--type", required=True, help="int, long, double, boolean or string")
    p.add_argument("--value", required=True)
    p.set_defaults(func=cmd_add_property)

    p = sub.add_parser("remove-property", help="Remove a property from all nodes or edges")
    p.add_argument("--target", choices=["node", "edge"], required=True)
    p.add_argument("--key", required=True)
    p.set_defaults(func=cmd_remove_property)

    p = with_graph(sub.add_parser("export", help="Visualisation data for a graph"))
    p.add_argument("--output", type=Path, help="Write node-link JSON here instead of printing")
    p.set_defaults(func=cmd_export)

    p = sub.add_parser("seed-template", help="Load chains into the template namespace")
    p.add_argument("--file", required=True, type=Path)
    p.set_defaults(func=cmd_seed_template)

    return parser


def main():
    load_dotenv()
    args = build_parser().parse_args()

    if not args.verbose:
        logger.remove()
        logger.add(sys.stderr, level="INFO")

    try:
        settings = load_settings(args.config)
        with SongMapService.from_settings(settings) as service, service.call_timeout(args.timeout):
            args.func(service, args)
    except SongMapError as e:
        logger.error(f"{e.kind}: {e.message}")
        sys.exit(1)


if __name__ == "__main__":
    main()
