"""Account domain service."""

from typing import Optional
from spendmetrics.database.base import Database
from spendmetrics.domain.entities import Account as AccountEntity
from spendmetrics.domain.errors import NotFoundError, ValidationError, account_not_found


class AccountService:
    """Service for managing accounts."""

    def __init__(self, db: Database):
        """Initialize account service.

        Args:
            db: Database instance
        """
        self.db = db

    def create_account(self, name: str, bank_name: str) -> int:
        """Create a new account.

        Args:
            name: Account name
            bank_name: Bank name

        Returns:
            Account ID

        Raises:
            ValidationError: If name is blank or already used
        """
        if not name or not name.strip():
            raise ValidationError("Account name must not be empty")
        for acc in self.db.list_accounts():
            if acc.name == name:
                raise ValidationError(f"Account with name '{name}' already exists")

        return self.db.create_account(name=name, bank_name=bank_name)

    def get_account(self, account_id: int) -> Optional[AccountEntity]:
        """Get account by ID, or None."""
        return self.db.get_account(account_id)

    def require_account(self, account_id: int) -> AccountEntity:
        """Get account by ID.

        Raises:
            NotFoundError: If account does not exist
        """
        account = self.db.get_account(account_id)
        if account is None:
            raise NotFoundError(account_not_found(account_id))
        return account

    def list_accounts(self) -> list[AccountEntity]:
        return self.db.list_accounts()

    def resolve_account(self, account: str | int) -> AccountEntity:
        """Resolve an account name or ID.

        Numeric input is treated as an ID first, then as a name.

        Raises:
            NotFoundError: If no account matches
        """
        if isinstance(account, int):
            return self.require_account(account)

        try:
            account_id = int(account)
        except (ValueError, TypeError):
            account_id = None
        if account_id is not None:
            found = self.db.get_account(account_id)
            if found is not None:
                return found

        for acc in self.db.list_accounts():
            if acc.name == account:
                return acc

        raise NotFoundError(f"Account '{account}' not found")
