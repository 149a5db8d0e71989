#!/usr/bin/env python3
"""Import a CSV of contacts for a user, then run enrichment on their network.

Usage: import_contacts.py <email> <name> <contacts.csv> [--no-enrich]
"""
import sys, os
import logging
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from warmintro.enrichment import enrich_network, import_contacts_csv
from warmintro.services import build_services


def main():
    args = [a for a in sys.argv[1:] if not a.startswith("--")]
    if len(args) != 3:
        print(__doc__)
        sys.exit(1)
    email, name, csv_path = args
    logging.basicConfig(level=logging.INFO)

    services = build_services()
    store = services.store
    user = store.get_user_by_email(email) or store.create_user(email=email, name=name)
    print(f"User: {user.name} <{user.email}> id={user.id}")

    with open(csv_path, encoding="utf-8") as f:
        count = import_contacts_csv(store, user.id, f.read())
    print(f"Imported {count} contacts")

    if "--no-enrich" not in sys.argv:
        enriched = enrich_network(store, services.enricher, user.id)
        print(f"Enriched {enriched} contacts")


if __name__ == "__main__":
    main()
