"""Describes the Ramen Road domain. Centres around the visit ledger.

Why is this hard?

- A restaurant holds many visits, a visit holds many participants, and each
  participant may or may not have rated it yet.
- Two averages (per visit, per restaurant) are derived from those ratings and
  have to stay consistent with them after every write.
- Who may change what depends on where a record came from: its creator,
  the participant themselves, or an admin.
- Members can leave, but the history they took part in stays.

Everything else (planned visits, schedules) is plain lists with an owner.
"""
