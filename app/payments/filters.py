import django_filters as filters

from payments.models import Transaction
from payments.state_machines import GatewayCode, TransactionStatus, TransactionType


class TransactionFilter(filters.FilterSet):
    status = filters.ChoiceFilter(choices=TransactionStatus.choices)
    gateway = filters.ChoiceFilter(choices=GatewayCode.choices)
    transaction_type = filters.ChoiceFilter(choices=TransactionType.choices)
    start_date = filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="gte")
    end_date = filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="lte")
    customer_email = filters.CharFilter(field_name="customer_email", lookup_expr="iexact")
    reference = filters.CharFilter(field_name="reference", lookup_expr="icontains")

    class Meta:
        model = Transaction
        fields = [
            "status",
            "gateway",
            "transaction_type",
            "is_subscription",
            "start_date",
            "end_date",
            "customer_email",
            "reference",
        ]
