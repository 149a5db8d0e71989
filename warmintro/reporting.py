"""Read-only marketplace report for admins. Not used by matching or the request lifecycle."""
from warmintro.models import AdminStats, IntroStatus, compute_response_rate
from warmintro.store.base import Store


def build_admin_stats(store: Store) -> AdminStats:
    counts = store.count_intro_requests_by_status()
    total = sum(counts.values())
    completed = counts[IntroStatus.COMPLETED]
    success_rate = compute_response_rate(completed, total)
    return AdminStats(
        total_users=store.count_users(),
        total_contacts=store.count_contacts(),
        enriched_contacts=store.count_contacts(enriched=True),
        total_requests=total,
        active_intros=counts[IntroStatus.PENDING] + counts[IntroStatus.ACCEPTED],
        completed_intros=completed,
        declined_intros=counts[IntroStatus.DECLINED],
        success_rate=success_rate,
    )
