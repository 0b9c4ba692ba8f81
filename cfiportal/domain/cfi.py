from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class CfiRecord(BaseModel):
    # Remote payloads carry many fields we do not use; keep them out of the cache.
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class Stock(CfiRecord):
    id: int
    id_division: int = Field(alias="idDivision")
    nom: str | None = None
    code_client: str | None = Field(default=None, alias="codeClient")
    ref_stockage: str | None = Field(default=None, alias="refStockage")
    qte: float | None = None
    stock_minimum: float | None = Field(default=None, alias="stockMinimum")
    hauteur_cm: float | None = Field(default=None, alias="hauteurCm")
    largeur_cm: float | None = Field(default=None, alias="largeurCm")
    profondeur_cm: float | None = Field(default=None, alias="profondeurCm")
    poids_g: float | None = Field(default=None, alias="poidsG")
    commentaire: str | None = None

    @property
    def en_alerte(self) -> bool:
        # Unknown quantity or threshold never counts as an alert.
        if self.qte is None or self.stock_minimum is None:
            return False
        return self.qte < self.stock_minimum


class FactureLigne(CfiRecord):
    id: int
    libelle: str
    qte: int | None = None
    montant_ht: float | None = Field(default=None, alias="montantHT")
    taux_tva: float | None = Field(default=None, alias="tauxTVA")


class FactureDetail(CfiRecord):
    id: int
    adresse: str
    nom_commande: str = Field(alias="nomCommande")
    demandeur: str
    montant_ttc: float = Field(alias="montantTTC")
    montant_ht: float = Field(alias="montantHT")
    id_type_cout: int = Field(alias="idTypeCout")
    id_type_paiement: int = Field(alias="idTypePaiement")
    id_delai_paiement: int = Field(alias="idDelaiPaiement")
    lignes: list[FactureLigne] = Field(default_factory=list)


class Facture(CfiRecord):
    id: int
    date_mise_a_dispo: datetime = Field(alias="dateMiseADispo")
    mois_facturation: datetime = Field(alias="moisFacturation")
    factures: list[FactureDetail] = Field(default_factory=list)

    @property
    def montant_ttc(self) -> float:
        return sum(detail.montant_ttc for detail in self.factures)


class LigneOperation(CfiRecord):
    id: int
    nom: str
    type: str
    date_creation: datetime = Field(alias="dateCreation")
    id_campagne: int | None = Field(default=None, alias="idCampagne")
    nom_campagne: str | None = Field(default=None, alias="nomCampagne")
    statut: str | None = None
    nb_destinataires: int | None = Field(default=None, alias="nbDestinataires")
    nb_envoyes: int | None = Field(default=None, alias="nbEnvoyes")
    id_etat_operation: int | None = Field(default=None, alias="idEtatOperation")


class EtatOperation(CfiRecord):
    id: int
    libelle: str
    description: str | None = None


class DroitsUtilisateur(CfiRecord):
    connexion: bool = False
    pwa: bool = False
    administrateur: bool = False
    logistique: bool = False
    production: bool = False
    developpement: bool = False
    utilisateurs_modif: bool = Field(default=False, alias="utilisateurs_Modif")
    utilisateurs_crea: bool = Field(default=False, alias="utilisateurs_Crea")
    utilisateurs_supp: bool = Field(default=False, alias="utilisateurs_Supp")
    utilisateurs_emprunt_identite: bool = Field(default=False, alias="utilisateurs_EmpruntIdentite")
    divisions_crea: bool = Field(default=False, alias="divisions_Crea")
    divisions_modif: bool = Field(default=False, alias="divisions_Modif")
    divisions_visu: bool = Field(default=False, alias="divisions_Visu")
    stocks_crea: bool = Field(default=False, alias="stocks_Crea")
    stocks_modif: bool = Field(default=False, alias="stocks_Modif")
    stocks_visu: bool = Field(default=False, alias="stocks_Visu")
    stocks_supp: bool = Field(default=False, alias="stocks_Supp")
    operations_crea: bool = Field(default=False, alias="operations_Crea")
    operations_valid: bool = Field(default=False, alias="operations_Valid")
    operations_visu: bool = Field(default=False, alias="operations_Visu")
    campagnes_commande: bool = Field(default=False, alias="campagnes_Commande")
    campagnes_edit: bool = Field(default=False, alias="campagnes_Edit")
    reprises_visu: bool = Field(default=False, alias="reprises_Visu")
    npai_crea: bool = Field(default=False, alias="npaI_Crea")
    npai_visu: bool = Field(default=False, alias="npaI_Visu")
    factures_visu: bool = Field(default=False, alias="factures_Visu")
    signataire: bool = False
    valideur: bool = False
    telechargement_hd: float = Field(default=0.0, alias="telechargementHD")


class Division(CfiRecord):
    id: int
    nom: str | None = None


class CfiIdentity(CfiRecord):
    # Authenticated user as returned by the CFI login endpoints.
    id: int
    id_division: int = Field(alias="idDivision")
    nom_division: str | None = Field(default=None, alias="nomDivision")
    nom: str | None = None
    prenom: str | None = None
    email: str | None = None
    type_option_ga: str | None = Field(default=None, alias="type_d_option_GA")
    jeton: str | None = None


class TenantInfo(BaseModel):
    id_cfi: int
    nom: str
    code: str | None = None
    actif: bool = True
    permissions: dict[str, bool] = Field(default_factory=dict)
