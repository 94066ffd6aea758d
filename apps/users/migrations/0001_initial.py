import apps.users.models
import django.core.validators
import django.utils.timezone
import shared.infrastructure.fields
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("auth", "0012_alter_user_first_name_max_length"),
    ]

    operations = [
        migrations.CreateModel(
            name="CustomUser",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("password", models.CharField(max_length=128, verbose_name="password")),
                ("last_login", models.DateTimeField(blank=True, null=True, verbose_name="last login")),
                ("is_superuser", models.BooleanField(default=False, help_text="Designates that this user has all permissions without explicitly assigning them.", verbose_name="superuser status")),
                ("first_name", models.CharField(blank=True, max_length=150, verbose_name="first name")),
                ("last_name", models.CharField(blank=True, max_length=150, verbose_name="last name")),
                ("is_staff", models.BooleanField(default=False, help_text="Designates whether the user can log into this admin site.", verbose_name="staff status")),
                ("is_active", models.BooleanField(default=True, help_text="Designates whether this user should be treated as active. Unselect this instead of deleting accounts.", verbose_name="active")),
                ("date_joined", models.DateTimeField(default=django.utils.timezone.now, verbose_name="date joined")),
                ("username", models.CharField(blank=True, help_text="Optional, shown in notifications and on payouts.", max_length=150, verbose_name="Display name")),
                ("email", models.EmailField(max_length=254, unique=True, verbose_name="Email")),
                ("role", models.CharField(choices=[("organizer", "Organizer"), ("talent", "Talent"), ("admin", "Admin")], default="organizer", max_length=20, verbose_name="Role")),
                ("kyc_status", models.CharField(choices=[("unverified", "Not submitted"), ("pending", "Under review"), ("verified", "Verified"), ("rejected", "Rejected")], default="unverified", max_length=20, verbose_name="KYC status")),
                ("kyc_verified_at", models.DateTimeField(blank=True, null=True, verbose_name="KYC verified at")),
                ("mpesa_phone", shared.infrastructure.fields.EncryptedCharField(blank=True, help_text="Payout destination for talents.", max_length=20, validators=[django.core.validators.RegexValidator(message="Invalid phone number. Use the international format without spaces.", regex="^\\+?\\d{9,15}$")], verbose_name="M-Pesa number")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("groups", models.ManyToManyField(blank=True, help_text="The groups this user belongs to. A user will get all permissions granted to each of their groups.", related_name="user_set", related_query_name="user", to="auth.group", verbose_name="groups")),
                ("user_permissions", models.ManyToManyField(blank=True, help_text="Specific permissions for this user.", related_name="user_set", related_query_name="user", to="auth.permission", verbose_name="user permissions")),
            ],
            options={
                "verbose_name": "User",
                "verbose_name_plural": "Users",
                "ordering": ["-created_at"],
            },
            managers=[
                ("objects", apps.users.models.CustomUserManager()),
            ],
        ),
    ]
