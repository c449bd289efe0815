import random
from datetime import timedelta
from decimal import Decimal

import click
from faker import Faker
from flask.cli import AppGroup
from sqlalchemy.exc import SQLAlchemyError

from commfund.extensions import db, safe_commit

fake = Faker()

donations_cli = AppGroup("donations", help="Campaign aggregate maintenance.")


@donations_cli.command("recompute")
def recompute_cmd():
    """Rebuild every campaign's totals from confirmed donations."""
    from commfund.services.recompute import recompute_all_aggregates

    try:
        results = recompute_all_aggregates()
    except SQLAlchemyError as e:
        click.secho(f"❌ Recompute failed: {e}", fg="red", bold=True)
        raise SystemExit(1)

    for campaign_id, agg in results.items():
        click.echo(f"  ↳ {campaign_id}: {agg['donorsCount']} donor(s), {agg['totalDonated']:.2f}")
    click.secho(f"✅ Recomputed {len(results)} campaign(s)", fg="bright_green", bold=True)


@donations_cli.command("close-expired")
def close_expired_cmd():
    """Close active campaigns whose end date has passed."""
    from commfund.services.lifecycle import close_expired_campaigns

    try:
        closed = close_expired_campaigns()
    except SQLAlchemyError as e:
        click.secho(f"❌ Closing expired campaigns failed: {e}", fg="red", bold=True)
        raise SystemExit(1)
    click.secho(f"✅ Closed {closed} expired campaign(s)", fg="bright_green", bold=True)


@donations_cli.command("seed-demo")
@click.option("--campaigns", default=3, show_default=True)
@click.option("--donations", default=12, show_default=True, help="Donations per campaign.")
@click.option("--clear", is_flag=True, help="Remove existing campaigns and donations first.")
def seed_demo_cmd(campaigns, donations, clear):
    """Seed demo campaigns with a mix of confirmed and pending donations."""
    from commfund.models import Campaign, Donation, utcnow
    from commfund.services.recompute import recompute_all_aggregates

    if clear:
        _clear_data(Campaign, Donation)

    now = utcnow()
    for _ in range(campaigns):
        slug = fake.unique.slug()
        db.session.add(
            Campaign(
                id=slug,
                title=f"{fake.city()} {fake.word().capitalize()} Appeal",
                goal_amount=Decimal(random.choice([500, 1000, 2500, 5000])),
                currency="GBP",
                status="active",
                start_at=now - timedelta(days=random.randint(1, 30)),
                end_at=now + timedelta(days=random.randint(-3, 60)),
                total_donated=Decimal("0.00"),
                donors_count=0,
                last_donors=[],
            )
        )
        if not safe_commit():
            click.secho(f"❌ Could not create campaign {slug}", fg="red", bold=True)
            raise SystemExit(1)

        for _ in range(donations):
            db.session.add(
                Donation(
                    campaign_id=slug,
                    amount=Decimal(random.choice([5, 10, 20, 25, 50, 100])),
                    currency="GBP",
                    status=random.choice(["confirmed", "confirmed", "confirmed", "pending"]),
                    is_anonymous=random.random() < 0.2,
                    donor_name=fake.name(),
                    message=fake.sentence(nb_words=8),
                    method=random.choice(["offline", "stripe"]),
                )
            )
        safe_commit()
        click.echo(f"  ↳ {slug}: {donations} donation(s)")

    results = recompute_all_aggregates()
    click.secho(f"✅ Seeded {campaigns} campaign(s); {len(results)} aggregate(s) rebuilt", fg="bright_green", bold=True)


def _clear_data(Campaign, Donation):
    click.secho("🧹 Clearing campaigns and donations…", fg="yellow")
    for model in (Donation, Campaign):
        deleted = db.session.query(model).delete()
        click.secho(f"  ↳ {deleted} {model.__name__} removed", fg="yellow")
    safe_commit()


def register_cli(app):
    app.cli.add_command(donations_cli)
