# emr_core/iam/management/commands/assign_role.py

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError

from emr_core.common.permissions import Role
from emr_core.iam.models import UserProfile


class Command(BaseCommand):
    help = "Assign (or change) the single EMR role of a user (idempotent)."

    def add_arguments(self, parser):
        parser.add_argument("username")
        parser.add_argument("role", choices=list(Role.values))
        parser.add_argument("--deactivate", action="store_true", help="Mark the profile inactive.")

    def handle(self, *args, **options):
        User = get_user_model()
        try:
            user = User.objects.get(username=options["username"])
        except User.DoesNotExist:
            raise CommandError(f"User '{options['username']}' does not exist.")

        profile, created = UserProfile.objects.update_or_create(
            user=user,
            defaults={"role": options["role"], "is_active": not options["deactivate"]},
        )

        verb = "Created" if created else "Updated"
        self.stdout.write(self.style.SUCCESS(f"{verb} profile: {profile}"))
