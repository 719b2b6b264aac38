"""
Permission classes for the payments API.

- IsTransactionOwnerOrStaff: refunds and retries on someone else's
  payment are refused

Ownership follows TransactionQuerySet.visible_to(), the same rule the
history endpoint uses to scope its results.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rest_framework import permissions

from payments.models import Transaction

if TYPE_CHECKING:
    from rest_framework.request import Request
    from rest_framework.views import APIView


class IsTransactionOwnerOrStaff(permissions.BasePermission):
    """
    Allows access to staff and to the transaction's owner.

    The owner is the user who started the payment or whose email the
    payment was made under.
    """

    message = "You do not have access to this transaction."

    def has_object_permission(self, request: Request, view: APIView, obj: Transaction) -> bool:
        if not request.user.is_authenticated:
            return False
        return Transaction.objects.visible_to(request.user).filter(pk=obj.pk).exists()
