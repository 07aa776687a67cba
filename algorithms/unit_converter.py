class UnitConverter:
    """Utility for converting body and load measurements for display."""

    KG_TO_LB = 2.20462
    CM_PER_FOOT = 30.48

    @staticmethod
    def kg_to_lb(kg: float) -> float:
        return round(kg * UnitConverter.KG_TO_LB, 2)

    @staticmethod
    def lb_to_kg(lb: float) -> float:
        return round(lb / UnitConverter.KG_TO_LB, 2)

    @staticmethod
    def cm_to_ft(cm: float) -> float:
        return round(cm / UnitConverter.CM_PER_FOOT, 2)

    @staticmethod
    def ft_to_cm(ft: float) -> float:
        return round(ft * UnitConverter.CM_PER_FOOT, 1)

    @classmethod
    def display_weight(cls, kg: float, unit: str) -> float:
        """Return ``kg`` expressed in ``unit`` (``kg`` or ``lbs``)."""
        if unit == "lbs":
            return cls.kg_to_lb(kg)
        if unit != "kg":
            raise ValueError(f"unknown weight unit: {unit}")
        return round(kg, 2)

    @classmethod
    def display_height(cls, cm: float, unit: str) -> float:
        """Return ``cm`` expressed in ``unit`` (``cm`` or ``ft``)."""
        if unit == "ft":
            return cls.cm_to_ft(cm)
        if unit != "cm":
            raise ValueError(f"unknown height unit: {unit}")
        return round(cm, 1)
