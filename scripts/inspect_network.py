#!/usr/bin/env python3
"""Debug tool: show a user's network and, optionally, run a search as them.

Usage: inspect_network.py <email> [search query]
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from warmintro.reporting import build_admin_stats
from warmintro.services import build_services


def main():
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)
    services = build_services()
    user = services.store.get_user_by_email(sys.argv[1])
    if user is None:
        print(f"No user with email {sys.argv[1]}")
        sys.exit(1)

    contacts = services.store.get_contacts_for_owner(user.id)
    enriched = [c for c in contacts if c.enriched]
    print(f"{user.name}: {len(contacts)} contacts, {len(enriched)} enriched")
    for c in enriched[:10]:
        print(f"  - {c.name} | {c.title} @ {c.company} | {c.industry} | conf={c.confidence}")

    stats = services.store.get_connector_stats(user.id)
    if stats:
        print(f"As connector: {stats.total_requests} requests, {stats.success_count} completed, "
              f"{stats.response_rate}% success")
    print(f"Intro requests left this week: {services.intros.remaining_this_week(user.id)}")

    if len(sys.argv) > 2:
        query = " ".join(sys.argv[2:])
        result = services.engine.search(user.id, query)
        print(f"\n--- Search {query!r} ---")
        print(f"Direct ({len(result.direct)}):")
        for m in result.direct:
            print(f"  - {m.contact.name} | {m.contact.title} @ {m.contact.company}")
        print(f"Indirect ({len(result.indirect)}):")
        for m in result.indirect:
            s = m.connector_stats
            print(f"  - {m.company} via {m.connector_name} (conf={m.confidence}, "
                  f"{s.success_count} intros, {s.response_rate}%)")

    print("\n--- Marketplace ---")
    print(build_admin_stats(services.store).model_dump_json(indent=2))


if __name__ == "__main__":
    main()
