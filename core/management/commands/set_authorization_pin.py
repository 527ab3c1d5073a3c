import getpass

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError

from common.exceptions import DomainError
from pins import services


class Command(BaseCommand):
    help = "Set (or force-reset) the authorization PIN for a realm without the current PIN."

    def add_arguments(self, parser):
        parser.add_argument("--realm", default=None, help="PIN realm. Defaults to AUTHORIZATION_PIN_DEFAULT_REALM.")
        parser.add_argument("--action-class", default=services.DEFAULT_ACTION_CLASS)
        parser.add_argument("--pin", default=None, help="New PIN. Prompted for when omitted.")
        parser.add_argument("--actor", default=None, help="Username recorded as the one who changed the PIN.")

    def _read_pin(self):
        new_pin = getpass.getpass("New PIN: ")
        if new_pin != getpass.getpass("Repeat PIN: "):
            raise CommandError("PINs do not match.")
        return new_pin

    def handle(self, *args, **options):
        actor = None
        if options["actor"]:
            actor = get_user_model().objects.filter(username=options["actor"]).first()
            if actor is None:
                raise CommandError(f"Unknown user {options['actor']!r}.")

        new_pin = options["pin"] or self._read_pin()

        try:
            record, outcome = services.set_or_rotate(
                mode=services.RotationMode.SET,
                new_pin=new_pin,
                realm=options["realm"],
                action_class=options["action_class"],
                actor=actor,
            )
        except DomainError as exc:
            raise CommandError(exc.message) from exc

        self.stdout.write(
            self.style.SUCCESS(f"Authorization PIN {outcome.label.lower()} for {record.realm}/{record.action_class}.")
        )
