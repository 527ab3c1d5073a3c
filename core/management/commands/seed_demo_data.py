from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand

from core.models import Terminal
from pins import services as pin_services


class Command(BaseCommand):
    help = "Seed demo operators, terminals and an override PIN for local development."

    def _user(self, User, username, role, password, **extra):
        user, created = User.objects.get_or_create(
            username=username,
            defaults={"email": f"{username}@example.com", "role": role, "is_active": True, **extra},
        )
        if created:
            user.set_password(password)
            user.save(update_fields=["password"])
        return user

    def handle(self, *args, **options):
        User = get_user_model()

        admin_user = self._user(User, "admin", User.Role.ADMIN, "admin1234", is_staff=True, is_superuser=True)
        self._user(User, "supervisor", User.Role.SUPERVISOR, "supervisor1234")
        self._user(User, "cashier", User.Role.CASHIER, "cashier1234")

        for index in (1, 2):
            Terminal.objects.get_or_create(
                code=f"TERMINAL-{index}",
                defaults={"name": f"POS Terminal {index}", "is_active": True},
            )

        realm = pin_services.resolve_realm()
        if pin_services.get_active_pin(realm, pin_services.DEFAULT_ACTION_CLASS) is None:
            pin_services.set_or_rotate(mode=pin_services.RotationMode.SET, new_pin="1234", actor=admin_user)

        self.stdout.write(self.style.SUCCESS("Demo data seeded."))
